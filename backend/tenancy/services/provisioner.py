"""
Schema provisioning: create a tenant schema, its tables and indexes, idempotently.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateIndex, CreateTable

from tenancy.core.dialects import create_schema_if_not_exists
from tenancy.core.errors import InvalidIdentifier, ProvisionError
from tenancy.core.logging import get_logger
from tenancy.schema.definitions import TableDefinitionSet
from tenancy.schema.naming import validate_schema_name
from tenancy.schema.tenant_tables import TENANT_TABLES

logger = get_logger(__name__)

STAGE_SCHEMA = "schema"
STAGE_TABLES = "tables"
STAGE_INDEXES = "indexes"


@dataclass
class ProvisionReport:
    schema_name: str
    schema_created: bool = False
    tables_created: List[str] = field(default_factory=list)
    tables_existing: List[str] = field(default_factory=list)
    indexes_created: List[str] = field(default_factory=list)
    indexes_existing: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.schema_created or bool(self.tables_created or self.indexes_created)


class SchemaProvisioner:
    """Creates tenant schemas from a TableDefinitionSet.

    Tables are created in declared dependency order, indexes only after every
    table exists. Objects already present are left untouched, so re-running is
    safe. Each stage commits on its own.
    """

    def __init__(self, engine: Engine, tables: TableDefinitionSet = TENANT_TABLES):
        self.engine = engine
        self.tables = tables

    def provision(self, schema_name: str, tenant_id: Optional[str] = None) -> ProvisionReport:
        report = ProvisionReport(schema_name=schema_name)
        self.create_schema(schema_name, tenant_id=tenant_id, report=report)
        self.create_tables(schema_name, tenant_id=tenant_id, report=report)
        self.create_indexes(schema_name, tenant_id=tenant_id, report=report)
        logger.info(
            "Provisioned schema %s tables_created=%d indexes_created=%d",
            schema_name,
            len(report.tables_created),
            len(report.indexes_created),
        )
        return report

    def create_schema(
        self,
        schema_name: str,
        tenant_id: Optional[str] = None,
        report: Optional[ProvisionReport] = None,
    ) -> ProvisionReport:
        report = report or ProvisionReport(schema_name=schema_name)
        self._check_name(schema_name, tenant_id)
        try:
            with self.engine.begin() as conn:
                report.schema_created = create_schema_if_not_exists(conn, schema_name)
        except SQLAlchemyError as exc:
            raise ProvisionError(tenant_id, STAGE_SCHEMA, exc) from exc

        if report.schema_created:
            logger.info("Created schema %s", schema_name)
        return report

    def create_tables(
        self,
        schema_name: str,
        tenant_id: Optional[str] = None,
        report: Optional[ProvisionReport] = None,
    ) -> ProvisionReport:
        report = report or ProvisionReport(schema_name=schema_name)
        self._check_name(schema_name, tenant_id)
        try:
            with self.engine.begin() as conn:
                for table in self.tables.tables(schema_name):
                    if inspect(conn).has_table(table.name, schema=schema_name):
                        report.tables_existing.append(table.name)
                        continue
                    conn.execute(CreateTable(table, if_not_exists=True))
                    report.tables_created.append(table.name)
        except SQLAlchemyError as exc:
            raise ProvisionError(tenant_id, STAGE_TABLES, exc) from exc
        return report

    def create_indexes(
        self,
        schema_name: str,
        tenant_id: Optional[str] = None,
        report: Optional[ProvisionReport] = None,
    ) -> ProvisionReport:
        report = report or ProvisionReport(schema_name=schema_name)
        self._check_name(schema_name, tenant_id)
        try:
            with self.engine.begin() as conn:
                for table in self.tables.tables(schema_name):
                    existing = {ix["name"] for ix in inspect(conn).get_indexes(table.name, schema=schema_name)}
                    for index in sorted(table.indexes, key=lambda ix: ix.name):
                        if index.name in existing:
                            report.indexes_existing.append(index.name)
                            continue
                        conn.execute(CreateIndex(index, if_not_exists=True))
                        report.indexes_created.append(index.name)
        except SQLAlchemyError as exc:
            raise ProvisionError(tenant_id, STAGE_INDEXES, exc) from exc
        return report

    def _check_name(self, schema_name: str, tenant_id: Optional[str]) -> None:
        try:
            validate_schema_name(schema_name)
        except InvalidIdentifier as exc:
            raise ProvisionError(tenant_id, STAGE_SCHEMA, exc) from exc
