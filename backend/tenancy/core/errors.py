"""
Error taxonomy for schema provisioning, data migration and tenant resolution.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from tenancy.services.validator import ValidationReport


class TenancyError(Exception):
    """Base class for every error raised by the tenancy engine."""


class InvalidIdentifier(TenancyError):
    """A schema name (or tenant id feeding one) is not a safe SQL identifier."""

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(f"invalid identifier {identifier!r}: {reason}")
        self.identifier = identifier
        self.reason = reason


class ProvisionError(TenancyError):
    """DDL failure while creating a tenant schema, its tables or its indexes."""

    def __init__(self, tenant: Optional[str], stage: str, cause: BaseException) -> None:
        super().__init__(f"provisioning failed for tenant {tenant!r} at stage {stage!r}: {cause}")
        self.tenant = tenant
        self.stage = stage
        self.cause = cause


class MigrateError(TenancyError):
    """Row read/transform/write failure while copying a tenant's data."""

    def __init__(
        self,
        tenant: str,
        table: str,
        cause: object,
        row_id: Optional[str] = None,
    ) -> None:
        location = f"{table}[{row_id}]" if row_id is not None else table
        super().__init__(f"migration failed for tenant {tenant!r} at {location}: {cause}")
        self.tenant = tenant
        self.table = table
        self.cause = cause
        self.row_id = row_id


class ValidationMismatch(TenancyError):
    """Row counts or schema structure differ between source and destination."""

    def __init__(self, tenant: str, report: "ValidationReport") -> None:
        super().__init__(
            f"validation failed for tenant {tenant!r}: {'; '.join(report.mismatches)}"
        )
        self.tenant = tenant
        self.report = report


class AlreadyMigrated(TenancyError):
    """The tenant already owns a different schema name (schema names are write-once)."""

    def __init__(self, tenant: str, current: str, requested: str) -> None:
        super().__init__(
            f"tenant {tenant!r} is already migrated to {current!r}; refusing to reassign {requested!r}"
        )
        self.tenant = tenant
        self.current = current
        self.requested = requested


class TenantRegistryError(TenancyError):
    """Tenant registry read/write failure (unknown tenant, bad status, database error)."""


class TenantNotFound(TenancyError):
    """No active tenant matches the inbound host."""

    def __init__(self, host: str) -> None:
        super().__init__(f"no active tenant for host {host!r}")
        self.host = host


class TenantNotReady(TenancyError):
    """The tenant exists and is active but has not been migrated to its own schema yet."""

    def __init__(self, tenant: str) -> None:
        super().__init__(f"tenant {tenant!r} has no schema assigned yet")
        self.tenant = tenant
