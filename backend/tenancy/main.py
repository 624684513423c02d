"""
Schema Tenancy Service - FastAPI Main Application
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.engine import Engine

from tenancy.api.v1.api import api_router
from tenancy.core.config import settings
from tenancy.core.database import create_db_engine, session_factory
from tenancy.core.logging import get_logger, setup_logging
from tenancy.middleware.request_id import RequestIDMiddleware
from tenancy.middleware.tenant_context import TenantResolutionMiddleware
from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.services.resolver import TenantResolver

# Setup structured logging
setup_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


def create_app(engine: Optional[Engine] = None, resolver: Optional[TenantResolver] = None) -> FastAPI:
    """Build the application. ``engine``/``resolver`` are injected by tests; otherwise built at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Starting up {settings.APP_NAME}")
        owns_engine = engine is None
        app.state.engine = engine if engine is not None else create_db_engine()
        if resolver is not None:
            app.state.resolver = resolver
            app.state.registry = resolver.registry
        else:
            app.state.registry = TenantRegistry(session_factory(app.state.engine))
            app.state.resolver = TenantResolver(app.state.registry, app.state.engine)

        try:
            loaded = await asyncio.to_thread(app.state.resolver.refresh, "startup")
            logger.info(f"Tenant resolver warmed with {loaded} active tenants")
        except Exception as e:
            # First request retries the load
            logger.error(f"Failed to warm tenant resolver: {e}", exc_info=True)

        yield
        # Shutdown
        logger.info(f"Shutting down {settings.APP_NAME}")
        if resolver is None:
            app.state.resolver.close()
        if owns_engine:
            app.state.engine.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Schema-per-tenant routing and migration status for the fitness platform",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    # Added last runs first: request id, then tenant resolution
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "version": settings.VERSION}

    @app.get("/metrics")
    async def metrics_endpoint():
        """Expose Prometheus metrics."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "tenancy.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
