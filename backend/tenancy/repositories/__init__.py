from tenancy.repositories.base_repository import BaseRepository
from tenancy.repositories.tenant_repository import TenantChangeListener, TenantRegistry

__all__ = ["BaseRepository", "TenantRegistry", "TenantChangeListener"]
