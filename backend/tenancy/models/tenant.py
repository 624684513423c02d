"""
Tenant registry model (global schema)
"""
import enum

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from tenancy.core.config import settings
from tenancy.core.database import Base


class TenantStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Tenant(Base):
    __tablename__ = "tenants"
    __table_args__ = {"schema": settings.SHARED_SCHEMA}

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    subdomain = Column(String(63), nullable=True, unique=True, index=True)
    custom_domain = Column(String(255), nullable=True, unique=True, index=True)
    status = Column(String(20), nullable=False, default=TenantStatus.ACTIVE.value, index=True)
    # Write-once: assigned by the migration orchestrator, never reassigned
    schema_name = Column(String(63), nullable=True, unique=True, index=True)
    plan = Column(String(50), nullable=False, default="starter")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value

    @property
    def is_migrated(self) -> bool:
        return self.schema_name is not None

    def __repr__(self):
        return f"<Tenant(id='{self.id}', subdomain='{self.subdomain}', schema='{self.schema_name}')>"
