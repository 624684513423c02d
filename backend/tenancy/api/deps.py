"""
FastAPI dependencies over the objects built in the application lifespan.
"""
from fastapi import HTTPException, Request
from sqlalchemy.engine import Engine

from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.services.resolver import ScopedHandle, TenantSnapshot


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_registry(request: Request) -> TenantRegistry:
    return request.app.state.registry


def get_tenant_handle(request: Request) -> ScopedHandle:
    """Schema-scoped handle of the tenant resolved by TenantResolutionMiddleware"""
    handle = getattr(request.state, "tenant_handle", None)
    if handle is None:
        raise HTTPException(status_code=404, detail="Tenant not resolved")
    return handle


def get_current_tenant(request: Request) -> TenantSnapshot:
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not resolved")
    return tenant
