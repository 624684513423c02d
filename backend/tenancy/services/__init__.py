from tenancy.services.migrator import DataMigrator, MigrationReport, RowError, TableMigrationStats
from tenancy.services.orchestrator import (
    MigrationOrchestrator,
    MigrationPhase,
    MigrationRecord,
    MigrationSummary,
    TenantOutcome,
)
from tenancy.services.provisioner import ProvisionReport, SchemaProvisioner
from tenancy.services.resolver import Resolution, ResolutionStatus, ScopedHandle, TenantResolver
from tenancy.services.source import LegacySource
from tenancy.services.validator import MigrationValidator, TableCount, ValidationReport

__all__ = [
    "DataMigrator",
    "MigrationReport",
    "RowError",
    "TableMigrationStats",
    "MigrationOrchestrator",
    "MigrationPhase",
    "MigrationRecord",
    "MigrationSummary",
    "TenantOutcome",
    "ProvisionReport",
    "SchemaProvisioner",
    "Resolution",
    "ResolutionStatus",
    "ScopedHandle",
    "TenantResolver",
    "LegacySource",
    "MigrationValidator",
    "TableCount",
    "ValidationReport",
]
