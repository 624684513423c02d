"""
Migration orchestrator: provision -> migrate -> validate -> register, per tenant.

Tenants run on a bounded worker pool; inside a tenant every step is strictly
sequential. A tenant's failure is recorded in its outcome and never stops the
others. Cancellation is honoured between tenants, never in the middle of one.
"""
import enum
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.engine import Engine

from tenancy.core.config import settings
from tenancy.core.errors import InvalidIdentifier, TenancyError, ValidationMismatch
from tenancy.core.logging import get_logger, tenant_log_context
from tenancy.core.metrics import (
    observe_migration_duration,
    record_migration_outcome,
    record_phase_transition,
)
from tenancy.models.tenant import Tenant
from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.schema.definitions import TableDefinitionSet
from tenancy.schema.naming import SchemaNamer
from tenancy.schema.tenant_tables import TENANT_TABLES
from tenancy.services.migrator import DataMigrator, MigrationReport, TableMigrationStats
from tenancy.services.provisioner import ProvisionReport, SchemaProvisioner
from tenancy.services.source import LegacySource
from tenancy.services.validator import MigrationValidator, ValidationReport

logger = get_logger(__name__)


class MigrationPhase(str, enum.Enum):
    UNMIGRATED = "unmigrated"
    SCHEMA_CREATING = "schema_creating"
    TABLES_CREATING = "tables_creating"
    DATA_MIGRATING = "data_migrating"
    VALIDATING = "validating"
    MIGRATED = "migrated"
    FAILED = "failed"


_TRANSITIONS = {
    MigrationPhase.UNMIGRATED: {MigrationPhase.SCHEMA_CREATING},
    MigrationPhase.SCHEMA_CREATING: {MigrationPhase.TABLES_CREATING},
    MigrationPhase.TABLES_CREATING: {MigrationPhase.DATA_MIGRATING},
    MigrationPhase.DATA_MIGRATING: {MigrationPhase.VALIDATING},
    MigrationPhase.VALIDATING: {MigrationPhase.MIGRATED},
    MigrationPhase.MIGRATED: set(),
    MigrationPhase.FAILED: set(),
}

# Outcome status per tenant in a run
OUTCOME_MIGRATED = "migrated"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_PLANNED = "planned"


@dataclass
class MigrationRecord:
    """Where one tenant's migration got to, and what it copied."""

    tenant_id: str
    schema_name: str
    phase: MigrationPhase = MigrationPhase.UNMIGRATED
    failed_phase: Optional[MigrationPhase] = None
    rows: Dict[str, TableMigrationStats] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def advance(self, phase: MigrationPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise ValueError(f"illegal phase transition {self.phase.value} -> {phase.value}")
        record_phase_transition(self.phase.value, phase.value)
        self.phase = phase
        if phase is MigrationPhase.MIGRATED:
            self.finished_at = datetime.now(timezone.utc)

    def fail(self) -> None:
        if self.phase in (MigrationPhase.MIGRATED, MigrationPhase.FAILED):
            return
        record_phase_transition(self.phase.value, MigrationPhase.FAILED.value)
        self.failed_phase = self.phase
        self.phase = MigrationPhase.FAILED
        self.finished_at = datetime.now(timezone.utc)

    @property
    def reached(self) -> MigrationPhase:
        """Last phase entered before the run ended (the failing phase for failures)."""
        return self.failed_phase or self.phase


@dataclass
class TenantOutcome:
    tenant_id: str
    status: str
    schema_name: Optional[str] = None
    phase: MigrationPhase = MigrationPhase.UNMIGRATED
    error: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None
    record: Optional[MigrationRecord] = None
    provision: Optional[ProvisionReport] = None
    migration: Optional[MigrationReport] = None
    validation: Optional[ValidationReport] = None
    plan: Optional[Dict[str, int]] = None
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == OUTCOME_FAILED


@dataclass
class MigrationSummary:
    outcomes: List[TenantOutcome] = field(default_factory=list)
    dry_run: bool = False

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def migrated(self) -> int:
        return self._count(OUTCOME_MIGRATED)

    @property
    def failed(self) -> int:
        return self._count(OUTCOME_FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OUTCOME_SKIPPED)

    @property
    def cancelled(self) -> int:
        return self._count(OUTCOME_CANCELLED)

    @property
    def planned(self) -> int:
        return self._count(OUTCOME_PLANNED)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def outcome(self, tenant_id: str) -> Optional[TenantOutcome]:
        for outcome in self.outcomes:
            if outcome.tenant_id == tenant_id:
                return outcome
        return None


class MigrationOrchestrator:
    """Drives SchemaProvisioner, DataMigrator and MigrationValidator for a set of tenants."""

    def __init__(
        self,
        registry: TenantRegistry,
        provisioner: SchemaProvisioner,
        migrator: DataMigrator,
        validator: MigrationValidator,
        *,
        namer: Optional[SchemaNamer] = None,
        max_workers: Optional[int] = None,
    ):
        self.registry = registry
        self.provisioner = provisioner
        self.migrator = migrator
        self.validator = validator
        self.namer = namer or SchemaNamer()
        self.max_workers = max_workers or settings.MIGRATION_MAX_WORKERS
        self._cancel = threading.Event()
        # Records of failed tenants, kept until a later run migrates them
        self.failed_records: Dict[str, MigrationRecord] = {}
        self._records_lock = threading.Lock()

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        registry: TenantRegistry,
        *,
        tables: TableDefinitionSet = TENANT_TABLES,
        batch_size: Optional[int] = None,
        failure_policy: Optional[str] = None,
        max_workers: Optional[int] = None,
    ) -> "MigrationOrchestrator":
        source = LegacySource(engine)
        return cls(
            registry,
            SchemaProvisioner(engine, tables),
            DataMigrator(engine, tables, source=source, batch_size=batch_size, failure_policy=failure_policy),
            MigrationValidator(engine, tables, source=source),
            max_workers=max_workers,
        )

    # ------------------------------------------------------------------ cancellation

    def cancel(self) -> None:
        """Stop after the tenants already in progress; the rest are reported as cancelled."""
        if not self._cancel.is_set():
            logger.warning("Migration run cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------ run

    def run(
        self,
        tenant_ids: Optional[Iterable[str]] = None,
        include_migrated: bool = False,
        dry_run: bool = False,
    ) -> MigrationSummary:
        summary = MigrationSummary(dry_run=dry_run)
        selected, early, order = self._select(tenant_ids, include_migrated)
        planned = self._assign_schema_names(selected, early)

        logger.info(
            "Starting migration run tenants=%d workers=%d dry_run=%s",
            len(planned),
            self.max_workers,
            dry_run,
        )

        results: Dict[str, TenantOutcome] = dict(early)
        if planned:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="tenant-migration"
            ) as pool:
                futures = {
                    tenant.id: pool.submit(self._run_tenant, tenant, schema_name, dry_run)
                    for tenant, schema_name in planned
                }
                for tenant_id, future in futures.items():
                    results[tenant_id] = future.result()

        summary.outcomes = [results[tenant_id] for tenant_id in order]

        logger.info(
            "Migration run finished migrated=%d failed=%d skipped=%d cancelled=%d planned=%d",
            summary.migrated,
            summary.failed,
            summary.skipped,
            summary.cancelled,
            summary.planned,
        )
        return summary

    def migrate_tenant(self, tenant: Tenant, schema_name: Optional[str] = None) -> TenantOutcome:
        """Full pipeline for one tenant. Never raises: failures land in the outcome."""
        started = time.monotonic()
        try:
            schema_name = schema_name or tenant.schema_name or self.namer.name_for(tenant.id)
        except InvalidIdentifier as exc:
            return self._finish(TenantOutcome(tenant.id, OUTCOME_FAILED), exc, started)

        record = MigrationRecord(tenant_id=tenant.id, schema_name=schema_name)
        outcome = TenantOutcome(tenant.id, OUTCOME_MIGRATED, schema_name=schema_name, record=record)

        with tenant_log_context(tenant.id, schema_name):
            logger.info("Migrating tenant %s into %s", tenant.id, schema_name)
            try:
                record.advance(MigrationPhase.SCHEMA_CREATING)
                outcome.provision = self.provisioner.create_schema(schema_name, tenant_id=tenant.id)

                record.advance(MigrationPhase.TABLES_CREATING)
                self.provisioner.create_tables(schema_name, tenant_id=tenant.id, report=outcome.provision)
                self.provisioner.create_indexes(schema_name, tenant_id=tenant.id, report=outcome.provision)

                record.advance(MigrationPhase.DATA_MIGRATING)
                outcome.migration = self.migrator.migrate(tenant.id, schema_name)
                record.rows = outcome.migration.tables

                record.advance(MigrationPhase.VALIDATING)
                outcome.validation = self.validator.validate(
                    tenant.id, schema_name, skipped=outcome.migration.skipped_by_table()
                )
                if not outcome.validation.ok:
                    raise ValidationMismatch(tenant.id, outcome.validation)

                self.registry.set_schema_name(tenant.id, schema_name)
                record.advance(MigrationPhase.MIGRATED)
            except Exception as exc:
                record.fail()
                outcome.status = OUTCOME_FAILED
                outcome.phase = record.reached
                with self._records_lock:
                    self.failed_records[tenant.id] = record
                if isinstance(exc, TenancyError):
                    logger.error("Tenant %s failed in %s: %s", tenant.id, record.reached.value, exc)
                else:
                    logger.exception("Tenant %s failed in %s with an unexpected error", tenant.id, record.reached.value)
                return self._finish(outcome, exc, started)

            outcome.phase = MigrationPhase.MIGRATED
            with self._records_lock:
                self.failed_records.pop(tenant.id, None)
            logger.info("Tenant %s migrated rows=%d", tenant.id, outcome.migration.rows_written)
            return self._finish(outcome, None, started)

    # ------------------------------------------------------------------ internals

    def _run_tenant(self, tenant: Tenant, schema_name: str, dry_run: bool) -> TenantOutcome:
        if self._cancel.is_set():
            record_migration_outcome(OUTCOME_CANCELLED)
            return TenantOutcome(tenant.id, OUTCOME_CANCELLED, schema_name=schema_name, reason="run cancelled")
        if dry_run:
            return self._plan_tenant(tenant, schema_name)
        return self.migrate_tenant(tenant, schema_name)

    def _plan_tenant(self, tenant: Tenant, schema_name: str) -> TenantOutcome:
        started = time.monotonic()
        outcome = TenantOutcome(tenant.id, OUTCOME_PLANNED, schema_name=schema_name)
        with tenant_log_context(tenant.id, schema_name):
            try:
                outcome.plan = self.migrator.plan(tenant.id)
            except TenancyError as exc:
                outcome.status = OUTCOME_FAILED
                return self._finish(outcome, exc, started)
        outcome.duration_seconds = time.monotonic() - started
        return outcome

    def _select(
        self,
        tenant_ids: Optional[Iterable[str]],
        include_migrated: bool,
    ) -> Tuple[List[Tenant], Dict[str, TenantOutcome], List[str]]:
        early: Dict[str, TenantOutcome] = {}
        if tenant_ids is None:
            candidates = self.registry.list_active_tenants()
        else:
            candidates = []
            for tenant_id in dict.fromkeys(tenant_ids):
                tenant = self.registry.get_by_id(tenant_id)
                if tenant is None:
                    early[tenant_id] = self._early(tenant_id, OUTCOME_FAILED, error="unknown tenant", error_type="TenantRegistryError")
                elif not tenant.is_active:
                    early[tenant_id] = self._early(tenant_id, OUTCOME_SKIPPED, reason="tenant is inactive")
                else:
                    candidates.append(tenant)

        selected = []
        for tenant in candidates:
            if tenant.is_migrated and not include_migrated:
                early[tenant.id] = self._early(
                    tenant.id,
                    OUTCOME_SKIPPED,
                    schema_name=tenant.schema_name,
                    reason="already migrated",
                    phase=MigrationPhase.MIGRATED,
                )
                continue
            selected.append(tenant)
        order = list(dict.fromkeys([tenant.id for tenant in candidates] + list(early)))
        return selected, early, order

    def _assign_schema_names(
        self,
        selected: List[Tenant],
        early: Dict[str, TenantOutcome],
    ) -> List[Tuple[Tenant, str]]:
        """Schema per tenant; a name already owned by another tenant fails the later one."""
        owners = {tenant.schema_name: tenant.id for tenant in self.registry.list_all() if tenant.schema_name}
        planned = []
        for tenant in selected:
            try:
                schema_name = tenant.schema_name or self.namer.name_for(tenant.id)
                owner = owners.setdefault(schema_name, tenant.id)
                if owner != tenant.id:
                    raise InvalidIdentifier(schema_name, f"schema name collides with tenant {owner!r}")
            except InvalidIdentifier as exc:
                logger.error("Tenant %s cannot be migrated: %s", tenant.id, exc)
                early[tenant.id] = self._finish(TenantOutcome(tenant.id, OUTCOME_FAILED), exc, time.monotonic())
                continue
            planned.append((tenant, schema_name))
        return planned

    @staticmethod
    def _early(tenant_id: str, status: str, **kwargs) -> TenantOutcome:
        record_migration_outcome(status)
        return TenantOutcome(tenant_id, status, **kwargs)

    @staticmethod
    def _finish(outcome: TenantOutcome, exc: Optional[BaseException], started: float) -> TenantOutcome:
        if exc is not None:
            outcome.status = OUTCOME_FAILED
            outcome.error = str(exc)
            outcome.error_type = type(exc).__name__
        outcome.duration_seconds = time.monotonic() - started
        record_migration_outcome(outcome.status)
        observe_migration_duration(outcome.duration_seconds)
        return outcome
