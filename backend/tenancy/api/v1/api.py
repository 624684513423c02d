"""
API v1 router configuration
"""
from fastapi import APIRouter

from tenancy.api.v1.endpoints import admin, tenant

api_router = APIRouter()

api_router.include_router(tenant.router, prefix="/tenant", tags=["tenant"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
