"""
Tenant resolution middleware: binds every request to its tenant's schema.
"""
from typing import Callable, Optional, Sequence

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from tenancy.core.config import settings
from tenancy.core.logging import get_logger, tenant_log_context
from tenancy.services.resolver import Resolution, ResolutionStatus, TenantResolver

logger = get_logger(__name__)

PUBLIC_PATHS = ("/health", "/metrics", "/docs", "/redoc", "/openapi.json", "/api/v1/admin")


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """Resolve the tenant from the Host header (or the tenant header when enabled).

    Unknown hosts get a 404 and tenants that are not migrated yet a 503; neither
    reaches the endpoint. On success ``request.state.tenant`` and
    ``request.state.tenant_handle`` are set for the rest of the request.
    """

    def __init__(
        self,
        app: ASGIApp,
        public_paths: Sequence[str] = PUBLIC_PATHS,
        header_enabled: Optional[bool] = None,
        header_name: Optional[str] = None,
    ):
        super().__init__(app)
        self.public_paths = tuple(public_paths)
        self.header_enabled = settings.TENANT_HEADER_ENABLED if header_enabled is None else header_enabled
        self.header_name = header_name or settings.TENANT_HEADER_NAME

    def _is_public(self, path: str) -> bool:
        return any(path == public or path.startswith(public.rstrip("/") + "/") for public in self.public_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._is_public(request.url.path):
            return await call_next(request)

        resolver: TenantResolver = request.app.state.resolver
        resolution = await run_in_threadpool(self._resolve, resolver, request)

        if resolution.status is ResolutionStatus.NOT_FOUND:
            logger.info("No tenant for %s", resolution.host)
            return JSONResponse(status_code=404, content={"detail": "Tenant not found", "host": resolution.host})
        if resolution.status is ResolutionStatus.NOT_READY:
            logger.info("Tenant %s is not migrated yet", resolution.tenant.id)
            return JSONResponse(
                status_code=503,
                content={"detail": "Tenant not ready", "tenant": resolution.tenant.id},
                headers={"Retry-After": "60"},
            )

        request.state.tenant = resolution.tenant
        request.state.tenant_handle = resolution.handle
        with tenant_log_context(resolution.tenant.id, resolution.handle.schema_name):
            return await call_next(request)

    def _resolve(self, resolver: TenantResolver, request: Request) -> Resolution:
        if self.header_enabled:
            tenant_id = request.headers.get(self.header_name)
            if tenant_id:
                return resolver.resolve_tenant_id(tenant_id.strip())
        return resolver.resolve(request.headers.get("host") or request.url.hostname)
