"""
Tenant context endpoint (served on the tenant's own host)
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from tenancy.api.deps import get_current_tenant, get_tenant_handle
from tenancy.core.logging import get_logger
from tenancy.schemas.tenant import TenantContextResponse
from tenancy.services.resolver import ScopedHandle, TenantSnapshot

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=TenantContextResponse)
def get_tenant_context(
    tenant: TenantSnapshot = Depends(get_current_tenant),
    handle: ScopedHandle = Depends(get_tenant_handle),
):
    """Resolved tenant and the row counts of its schema"""
    try:
        row_counts = handle.row_counts()
    except SQLAlchemyError as e:
        logger.error(f"Error counting rows in {handle.schema_name}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read tenant schema")

    return TenantContextResponse(
        id=tenant.id,
        name=tenant.name,
        subdomain=tenant.subdomain,
        custom_domain=tenant.custom_domain,
        schema_name=handle.schema_name,
        plan=tenant.plan,
        row_counts=row_counts,
    )
