import pytest
from sqlalchemy import inspect

from tenancy.core.errors import InvalidIdentifier, ProvisionError
from tenancy.schema.tenant_tables import TENANT_TABLES

ALL_INDEXES = sorted(index.name for definition in TENANT_TABLES for index in definition.indexes)


def _schema_objects(engine, schema_name):
    with engine.connect() as conn:
        inspector = inspect(conn)
        tables = sorted(inspector.get_table_names(schema=schema_name))
        indexes = sorted(
            index["name"]
            for table in tables
            for index in inspector.get_indexes(table, schema=schema_name)
        )
    return tables, indexes


def test_provision_creates_schema_tables_and_indexes(engine, provisioner):
    report = provisioner.provision("tenant_t1", tenant_id="t1")

    assert report.schema_created
    assert report.tables_created == TENANT_TABLES.names
    assert sorted(report.indexes_created) == ALL_INDEXES

    tables, indexes = _schema_objects(engine, "tenant_t1")
    assert tables == sorted(TENANT_TABLES.names)
    assert indexes == ALL_INDEXES


def test_provision_twice_is_a_no_op(engine, provisioner):
    provisioner.provision("tenant_t1", tenant_id="t1")
    before = _schema_objects(engine, "tenant_t1")

    second = provisioner.provision("tenant_t1", tenant_id="t1")

    assert not second.changed
    assert second.tables_existing == TENANT_TABLES.names
    assert sorted(second.indexes_existing) == ALL_INDEXES
    assert _schema_objects(engine, "tenant_t1") == before


def test_provision_resumes_a_partially_created_schema(engine, provisioner):
    provisioner.create_schema("tenant_t1", tenant_id="t1")
    provisioner.create_tables("tenant_t1", tenant_id="t1")

    report = provisioner.provision("tenant_t1", tenant_id="t1")

    assert not report.schema_created
    assert report.tables_created == []
    assert sorted(report.indexes_created) == ALL_INDEXES


def test_schemas_are_isolated(engine, provisioner):
    provisioner.provision("tenant_t1")
    provisioner.provision("tenant_t2")

    assert _schema_objects(engine, "tenant_t1") == _schema_objects(engine, "tenant_t2")
    for table in TENANT_TABLES.tables("tenant_t2"):
        for fk in table.foreign_keys:
            assert fk.column.table.schema == "tenant_t2"


@pytest.mark.parametrize("schema_name", ['tenant_x"; DROP TABLE users; --', "public", "pg_temp_1", ""])
def test_unsafe_schema_names_never_reach_ddl(provisioner, schema_name):
    with pytest.raises(ProvisionError) as excinfo:
        provisioner.provision(schema_name, tenant_id="evil")

    error = excinfo.value
    assert error.tenant == "evil"
    assert error.stage == "schema"
    assert isinstance(error.cause, InvalidIdentifier)


def test_ddl_failure_reports_the_stage(engine, provisioner):
    # Tables cannot be created in a schema that was never created
    with pytest.raises(ProvisionError) as excinfo:
        provisioner.create_tables("tenant_ghost", tenant_id="ghost")

    assert excinfo.value.stage == "tables"
    assert excinfo.value.tenant == "ghost"
