"""
Operator endpoints over the tenant registry and migration results
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.engine import Engine

from tenancy.api.deps import get_engine, get_registry
from tenancy.core.errors import TenancyError
from tenancy.core.logging import get_logger
from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.schemas.tenant import TenantListResponse, TenantSummary, ValidationResponse
from tenancy.services.validator import MigrationValidator

router = APIRouter()
logger = get_logger(__name__)


@router.get("/tenants", response_model=TenantListResponse)
def list_tenants(registry: TenantRegistry = Depends(get_registry)):
    """Every registered tenant with its migration state"""
    tenants = registry.list_all()
    return TenantListResponse(
        tenants=[TenantSummary.model_validate(tenant) for tenant in tenants],
        total=len(tenants),
        migrated=sum(1 for tenant in tenants if tenant.is_migrated),
    )


@router.get("/tenants/{tenant_id}/validation", response_model=ValidationResponse)
def validate_tenant(
    tenant_id: str,
    registry: TenantRegistry = Depends(get_registry),
    engine: Engine = Depends(get_engine),
):
    """Compare the tenant's shared rows with its schema (read-only)"""
    tenant = registry.get_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not found")
    if not tenant.is_migrated:
        raise HTTPException(status_code=409, detail="Tenant has not been migrated yet")

    try:
        report = MigrationValidator(engine).validate(tenant.id, tenant.schema_name)
    except TenancyError as e:
        logger.error(f"Validation of tenant {tenant_id} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return ValidationResponse.from_report(report)
