from sqlalchemy import delete

from tenancy.schema.tenant_tables import TENANT_TABLES
from tests.conftest import SEEDED_COUNTS, add_orphan_workout

SCHEMA = "tenant_t1"


def _migrate(provisioner, migrator):
    provisioner.provision(SCHEMA, tenant_id="t1")
    return migrator.migrate("t1", SCHEMA)


def test_clean_migration_validates(acme, provisioner, migrator, validator):
    _migrate(provisioner, migrator)

    report = validator.validate("t1", SCHEMA)

    assert report.ok
    assert report.schema_exists
    assert report.expected_tables == report.found_tables == len(TENANT_TABLES)
    assert {name: count.destination for name, count in report.counts.items()} == SEEDED_COUNTS
    assert all(count.matches for count in report.counts.values())


def test_missing_schema_is_a_structural_mismatch(acme, validator):
    report = validator.validate("t1", SCHEMA)

    assert not report.ok
    assert not report.schema_exists
    assert report.found_tables == 0
    assert report.missing_tables == TENANT_TABLES.names
    assert report.counts == {}


def test_row_count_difference_is_reported(engine, acme, provisioner, migrator, validator):
    _migrate(provisioner, migrator)
    workouts = TENANT_TABLES.table(SCHEMA, "workouts")
    with engine.begin() as conn:
        conn.execute(delete(workouts).where(workouts.c.id == "t1-w2"))

    report = validator.validate("t1", SCHEMA)

    assert not report.ok
    assert report.counts["workouts"].source == 2
    assert report.counts["workouts"].destination == 1
    assert report.mismatches == ["workouts: source=2 destination=1"]


def test_missing_table_and_index_are_reported(engine, acme, provisioner, migrator, validator):
    _migrate(provisioner, migrator)
    with engine.begin() as conn:
        conn.exec_driver_sql(f'DROP INDEX "{SCHEMA}".ix_chat_messages_session_id')
        conn.exec_driver_sql(f'DROP TABLE "{SCHEMA}".refresh_tokens')

    report = validator.validate("t1", SCHEMA)

    assert not report.ok
    assert report.found_tables == len(TENANT_TABLES) - 1
    assert report.missing_tables == ["refresh_tokens"]
    assert report.missing_indexes == ["ix_chat_messages_session_id"]
    assert report.counts["refresh_tokens"].destination is None


def test_recorded_skips_are_accounted_for(Session, acme, provisioner, migrator, validator):
    add_orphan_workout(Session, "t1")
    migration = _migrate(provisioner, migrator)

    strict = validator.validate("t1", SCHEMA)
    lenient = validator.validate("t1", SCHEMA, skipped=migration.skipped_by_table())

    assert not strict.ok
    assert strict.mismatches == ["workouts: source=3 destination=2"]
    assert lenient.ok
    assert lenient.counts["workouts"].skipped == 1


def test_validation_never_writes(engine, acme, provisioner, validator):
    provisioner.provision(SCHEMA)

    validator.validate("t1", SCHEMA)

    report = validator.validate("t1", SCHEMA)
    assert all(count.destination == 0 for count in report.counts.values())
