"""
Data migration: copy one tenant's rows out of the shared tables into its schema.

Tables are processed in TableDefinitionSet order (parents first) and read in
primary-key order, one batch per transaction. Writes are upserts keyed on the
primary key, so a run can be repeated without duplicating rows. Columns filled
from a fallback are only written on insert; a re-run leaves the stored value.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import Table, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tenancy.core.config import ROW_FAILURE_POLICIES, settings
from tenancy.core.dialects import upsert_statement
from tenancy.core.errors import MigrateError
from tenancy.core.logging import get_logger
from tenancy.core.metrics import record_migrated_rows, record_skipped_rows
from tenancy.schema.definitions import ColumnDefinition, TableDefinition, TableDefinitionSet
from tenancy.schema.naming import validate_schema_name
from tenancy.schema.tenant_tables import TENANT_TABLES
from tenancy.services.source import TENANT_COLUMN, LegacySource

logger = get_logger(__name__)

POLICY_SKIP = "skip"
POLICY_ABORT = "abort"

REASON_ORPHAN = "orphan"
REASON_WRITE_FAILED = "write_failed"

Row = Dict[str, Any]
# Primary key -> columns whose value came from a fallback instead of the source
Filled = Dict[Any, FrozenSet[str]]


@dataclass
class TableMigrationStats:
    table: str
    read: int = 0
    written: int = 0
    skipped: int = 0


@dataclass
class RowError:
    table: str
    row_id: Optional[str]
    reason: str
    detail: str


@dataclass
class MigrationReport:
    tenant_id: str
    schema_name: str
    tables: Dict[str, TableMigrationStats] = field(default_factory=dict)
    errors: List[RowError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def stats(self, table: str) -> TableMigrationStats:
        if table not in self.tables:
            self.tables[table] = TableMigrationStats(table=table)
        return self.tables[table]

    @property
    def rows_read(self) -> int:
        return sum(stats.read for stats in self.tables.values())

    @property
    def rows_written(self) -> int:
        return sum(stats.written for stats in self.tables.values())

    @property
    def rows_skipped(self) -> int:
        return sum(stats.skipped for stats in self.tables.values())

    def skipped_by_table(self) -> Dict[str, int]:
        return {name: stats.skipped for name, stats in self.tables.items() if stats.skipped}


class DataMigrator:
    """Copies a tenant's legacy rows into its schema.

    Row failure policy:
      * ``skip``  - orphans and rows that fail to write are recorded in
        ``MigrationReport.errors`` and the run continues. A batch that fails as
        a whole is rolled back and retried one row per transaction.
      * ``abort`` - the first orphan or failed write raises ``MigrateError``.
        Batches already committed stay in place; a re-run upserts over them.

    Orphans (non-null foreign keys whose parent row is not in the tenant
    schema) are detected before the insert, so the destination's foreign keys
    are never violated.
    """

    def __init__(
        self,
        engine: Engine,
        tables: TableDefinitionSet = TENANT_TABLES,
        *,
        source: Optional[LegacySource] = None,
        batch_size: Optional[int] = None,
        failure_policy: Optional[str] = None,
    ):
        self.engine = engine
        self.tables = tables
        self.source = source or LegacySource(engine)
        self.batch_size = batch_size or settings.MIGRATION_BATCH_SIZE
        self.failure_policy = failure_policy or settings.MIGRATION_ROW_FAILURE_POLICY
        if self.failure_policy not in ROW_FAILURE_POLICIES:
            raise ValueError(f"unknown row failure policy {self.failure_policy!r}")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    # ------------------------------------------------------------------ planning

    def plan(self, tenant_id: str) -> Dict[str, int]:
        """Rows per table that a migration of ``tenant_id`` would read. Writes nothing."""
        counts = {}
        for definition in self.tables:
            try:
                count = self.source.count(definition.source_name, tenant_id)
            except SQLAlchemyError as exc:
                raise MigrateError(tenant_id, definition.name, exc) from exc
            counts[definition.name] = count or 0
        return counts

    # ------------------------------------------------------------------ migration

    def migrate(self, tenant_id: str, schema_name: str) -> MigrationReport:
        validate_schema_name(schema_name)
        report = MigrationReport(tenant_id=tenant_id, schema_name=schema_name)

        for definition in self.tables:
            stats = self.migrate_table(tenant_id, schema_name, definition, report)
            logger.info(
                "Migrated %s read=%d written=%d skipped=%d",
                definition.name,
                stats.read,
                stats.written,
                stats.skipped,
            )

        return report

    def migrate_table(
        self,
        tenant_id: str,
        schema_name: str,
        definition: TableDefinition,
        report: MigrationReport,
    ) -> TableMigrationStats:
        stats = report.stats(definition.name)

        try:
            source = self.source.table(definition.source_name)
        except SQLAlchemyError as exc:
            raise MigrateError(tenant_id, definition.name, exc) from exc

        if source is None:
            self._warn(report, f"shared table {definition.source_name!r} does not exist; nothing to copy")
            return stats
        if not self.source.is_tenant_scoped(source):
            self._warn(report, f"shared table {definition.source_name!r} has no {TENANT_COLUMN} column; skipped")
            return stats

        columns = [column for column in definition.columns if column.source_name in source.c]
        omitted = [column.name for column in definition.columns if column.source_name not in source.c]
        if omitted:
            self._warn(report, f"{definition.name}: source has no column for {', '.join(omitted)}; destination defaults apply")

        key = definition.primary_key[0]
        if key not in {column.name for column in columns}:
            raise MigrateError(tenant_id, definition.name, f"shared table has no {definition.column(key).source_name!r} column")

        target = self.tables.table(schema_name, definition.name)
        last_key = None
        while True:
            rows, filled = self._read_batch(tenant_id, definition, source, columns, last_key)
            if not rows:
                break
            stats.read += len(rows)
            last_key = rows[-1][key]
            self._write_batch(tenant_id, schema_name, definition, target, rows, filled, stats, report)
            if len(rows) < self.batch_size:
                break

        return stats

    # ------------------------------------------------------------------ read

    def _read_batch(
        self,
        tenant_id: str,
        definition: TableDefinition,
        source: Table,
        columns: Sequence[ColumnDefinition],
        last_key: Any,
    ) -> Tuple[List[Row], Filled]:
        order_column = source.c[definition.column(definition.primary_key[0]).source_name]
        stmt = (
            select(*[source.c[column.source_name].label(column.name) for column in columns])
            .where(source.c[TENANT_COLUMN] == tenant_id)
            .order_by(order_column)
            .limit(self.batch_size)
        )
        if last_key is not None:
            stmt = stmt.where(order_column > last_key)

        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise MigrateError(tenant_id, definition.name, exc) from exc

        key = definition.primary_key[0]
        rows: List[Row] = []
        filled: Filled = {}
        for row in result:
            values, from_fallback = self._transform(row, columns)
            rows.append(values)
            if from_fallback:
                filled[values[key]] = from_fallback
        return rows, filled

    @staticmethod
    def _transform(row, columns: Sequence[ColumnDefinition]) -> Tuple[Row, FrozenSet[str]]:
        values = {}
        from_fallback = []
        for column in columns:
            value = row[column.name]
            if value is None and column.fallback is not None:
                value = column.fallback_value()
                from_fallback.append(column.name)
            values[column.name] = value
        return values, frozenset(from_fallback)

    # ------------------------------------------------------------------ write

    def _write_batch(
        self,
        tenant_id: str,
        schema_name: str,
        definition: TableDefinition,
        target: Table,
        rows: List[Row],
        filled: Filled,
        stats: TableMigrationStats,
        report: MigrationReport,
    ) -> None:
        rows = self._drop_orphans(tenant_id, schema_name, definition, rows, stats, report)
        if not rows:
            return

        key = definition.primary_key[0]
        groups: Dict[FrozenSet[str], List[Row]] = {}
        for row in rows:
            groups.setdefault(filled.get(row[key], frozenset()), []).append(row)

        try:
            with self.engine.begin() as conn:
                for keep, group in groups.items():
                    conn.execute(self._upsert(conn, definition, target, group[0], keep), group)
            written = len(rows)
        except SQLAlchemyError as exc:
            if self.failure_policy == POLICY_ABORT:
                raise MigrateError(tenant_id, definition.name, _cause(exc)) from exc
            logger.warning(
                "Batch write to %s failed, retrying row by row: %s", definition.name, _cause(exc)
            )
            written = self._write_rows(tenant_id, definition, target, rows, filled, stats, report)

        stats.written += written
        record_migrated_rows(definition.name, written)

    def _write_rows(
        self,
        tenant_id: str,
        definition: TableDefinition,
        target: Table,
        rows: List[Row],
        filled: Filled,
        stats: TableMigrationStats,
        report: MigrationReport,
    ) -> int:
        key = definition.primary_key[0]
        written = 0
        for row in rows:
            keep = filled.get(row[key], frozenset())
            try:
                with self.engine.begin() as conn:
                    conn.execute(self._upsert(conn, definition, target, row, keep), row)
                written += 1
            except SQLAlchemyError as exc:
                self._reject(tenant_id, definition.name, row.get(key), REASON_WRITE_FAILED, _cause(exc), stats, report)
        return written

    def _upsert(self, conn, definition: TableDefinition, target: Table, sample: Row, keep: FrozenSet[str]):
        """Upsert of ``sample``'s columns; ``keep`` columns are set on insert only."""
        update = [column for column in sample if column not in keep]
        return upsert_statement(conn, target, definition.primary_key, update)

    def _drop_orphans(
        self,
        tenant_id: str,
        schema_name: str,
        definition: TableDefinition,
        rows: List[Row],
        stats: TableMigrationStats,
        report: MigrationReport,
    ) -> List[Row]:
        foreign_keys = [column for column in definition.foreign_keys if column.name in rows[0]]
        if not foreign_keys:
            return rows

        known: Dict[str, set] = {}
        try:
            with self.engine.connect() as conn:
                for column in foreign_keys:
                    parent_name, parent_column = column.references.split(".", 1)
                    values = {row[column.name] for row in rows if row[column.name] is not None}
                    found = set()
                    if values:
                        parent = self.tables.table(schema_name, parent_name)
                        found = set(
                            conn.execute(
                                select(parent.c[parent_column]).where(parent.c[parent_column].in_(list(values)))
                            ).scalars()
                        )
                    if parent_name == definition.name:
                        found.update(row[parent_column] for row in rows)
                    known[column.name] = found
        except SQLAlchemyError as exc:
            raise MigrateError(tenant_id, definition.name, exc) from exc

        key = definition.primary_key[0]
        kept = []
        for row in rows:
            missing = [
                f"{column.name}={row[column.name]!r} not in {column.references}"
                for column in foreign_keys
                if row[column.name] is not None and row[column.name] not in known[column.name]
            ]
            if missing:
                self._reject(tenant_id, definition.name, row.get(key), REASON_ORPHAN, "; ".join(missing), stats, report)
                continue
            kept.append(row)
        return kept

    # ------------------------------------------------------------------ bookkeeping

    def _reject(
        self,
        tenant_id: str,
        table: str,
        row_id: Optional[str],
        reason: str,
        detail: str,
        stats: TableMigrationStats,
        report: MigrationReport,
    ) -> None:
        if self.failure_policy == POLICY_ABORT:
            raise MigrateError(tenant_id, table, f"{reason}: {detail}", row_id=row_id)

        report.errors.append(RowError(table=table, row_id=row_id, reason=reason, detail=detail))
        stats.skipped += 1
        record_skipped_rows(table, reason)
        logger.warning("Skipped %s row %s (%s): %s", table, row_id, reason, detail)

    @staticmethod
    def _warn(report: MigrationReport, message: str) -> None:
        report.warnings.append(message)
        logger.warning(message)


def _cause(exc: SQLAlchemyError) -> str:
    """Driver message without SQLAlchemy's statement/parameter dump."""
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)
