"""
Read-only comparison of a tenant's shared rows against its migrated schema.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tenancy.core.dialects import schema_exists
from tenancy.core.logging import get_logger
from tenancy.schema.definitions import TableDefinitionSet
from tenancy.schema.naming import validate_schema_name
from tenancy.schema.tenant_tables import TENANT_TABLES
from tenancy.services.source import LegacySource

logger = get_logger(__name__)


@dataclass
class TableCount:
    source: int
    destination: Optional[int]
    skipped: int = 0

    @property
    def matches(self) -> bool:
        return self.destination is not None and self.source - self.skipped == self.destination


@dataclass
class ValidationReport:
    tenant_id: str
    schema_name: str
    schema_exists: bool = False
    expected_tables: int = 0
    found_tables: int = 0
    missing_tables: List[str] = field(default_factory=list)
    missing_indexes: List[str] = field(default_factory=list)
    counts: Dict[str, TableCount] = field(default_factory=dict)
    mismatches: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


class MigrationValidator:
    """Structural and row-count checks. Never writes.

    ``skipped`` lets the orchestrator account for rows the migrator rejected on
    purpose (recorded in its report); anything else that differs is a mismatch.
    """

    def __init__(
        self,
        engine: Engine,
        tables: TableDefinitionSet = TENANT_TABLES,
        *,
        source: Optional[LegacySource] = None,
    ):
        self.engine = engine
        self.tables = tables
        self.source = source or LegacySource(engine)

    def validate(
        self,
        tenant_id: str,
        schema_name: str,
        skipped: Optional[Mapping[str, int]] = None,
    ) -> ValidationReport:
        validate_schema_name(schema_name)
        skipped = skipped or {}
        report = ValidationReport(
            tenant_id=tenant_id,
            schema_name=schema_name,
            expected_tables=len(self.tables),
        )

        try:
            self._check_structure(report)
            if report.schema_exists:
                self._check_counts(report, skipped)
        except SQLAlchemyError as exc:
            report.mismatches.append(f"validation query failed: {exc}")
            logger.error("Validation of %s failed: %s", schema_name, exc)

        if report.ok:
            logger.info("Validated %s tables=%d", schema_name, report.found_tables)
        else:
            logger.warning("Validation mismatches for %s: %s", schema_name, "; ".join(report.mismatches))
        return report

    def _check_structure(self, report: ValidationReport) -> None:
        schema_name = report.schema_name
        with self.engine.connect() as conn:
            report.schema_exists = schema_exists(conn, schema_name)
            if not report.schema_exists:
                report.missing_tables = list(self.tables.names)
                report.mismatches.append(f"schema {schema_name!r} does not exist")
                return

            inspector = inspect(conn)
            present = set(inspector.get_table_names(schema=schema_name))
            for definition in self.tables:
                if definition.name not in present:
                    report.missing_tables.append(definition.name)
                    continue
                indexes = {ix["name"] for ix in inspector.get_indexes(definition.name, schema=schema_name)}
                report.missing_indexes.extend(
                    name for name in self.tables.index_names(definition.name) if name not in indexes
                )

        report.found_tables = report.expected_tables - len(report.missing_tables)
        if report.missing_tables:
            report.mismatches.append(
                f"expected {report.expected_tables} tables, found {report.found_tables} "
                f"(missing: {', '.join(report.missing_tables)})"
            )
        if report.missing_indexes:
            report.mismatches.append(f"missing indexes: {', '.join(report.missing_indexes)}")

    def _check_counts(self, report: ValidationReport, skipped: Mapping[str, int]) -> None:
        with self.engine.connect() as conn:
            for definition in self.tables:
                source_count = self.source.count(definition.source_name, report.tenant_id) or 0
                destination_count = None
                if definition.name not in report.missing_tables:
                    table = self.tables.table(report.schema_name, definition.name)
                    destination_count = conn.execute(select(func.count()).select_from(table)).scalar_one()

                count = TableCount(
                    source=source_count,
                    destination=destination_count,
                    skipped=skipped.get(definition.name, 0),
                )
                report.counts[definition.name] = count
                if destination_count is not None and not count.matches:
                    detail = f"{definition.name}: source={count.source} destination={count.destination}"
                    if count.skipped:
                        detail += f" skipped={count.skipped}"
                    report.mismatches.append(detail)
