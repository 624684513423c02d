from io import StringIO

import pytest

from tenancy.scripts.migrate_tenants import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, main
from tests.conftest import add_orphan_workout


def run_cli(engine, *args):
    out = StringIO()
    code = main(["--workers", "1", *args], engine=engine, out=out)
    return code, out.getvalue()


def test_migrates_pending_tenants_and_prints_a_report(engine, registry, acme, globex):
    code, output = run_cli(engine)

    assert code == EXIT_OK
    assert "MIGRATION COMPLETE" in output
    assert "Migrated:  2" in output
    assert "Failed:    0" in output
    assert "tenant_t1" in output
    assert registry.get_by_id("t2").schema_name == "tenant_t2"


def test_failed_tenant_sets_the_exit_code(engine, registry, Session, acme, globex):
    add_orphan_workout(Session, "t1")

    code, output = run_cli(engine, "--failure-policy", "abort")

    assert code == EXIT_FAILED
    assert "Failed:    1" in output
    assert "MigrateError" in output
    assert registry.get_by_id("t1").schema_name is None
    assert registry.get_by_id("t2").schema_name == "tenant_t2"


def test_dry_run_prints_the_plan(engine, registry, acme):
    code, output = run_cli(engine, "--dry-run", "--tenant", "t1")

    assert code == EXIT_OK
    assert "DRY RUN COMPLETE" in output
    assert "Planned:   1" in output
    assert "rows to copy" in output
    assert registry.get_by_id("t1").schema_name is None


def test_already_migrated_tenants_are_reported_as_skipped(engine, acme):
    run_cli(engine)

    code, output = run_cli(engine, "--tenant", "t1")

    assert code == EXIT_OK
    assert "already migrated" in output
    assert "Skipped:   1" in output


def test_invalid_worker_count_is_a_configuration_error(engine):
    assert main(["--workers", "0"], engine=engine, out=StringIO()) == EXIT_CONFIG


def test_unknown_failure_policy_is_rejected_by_the_parser(engine):
    with pytest.raises(SystemExit) as excinfo:
        main(["--failure-policy", "ignore"], engine=engine, out=StringIO())
    assert excinfo.value.code == 2


def test_invalid_database_url_is_a_configuration_error():
    assert main(["--database-url", "not a url"], out=StringIO()) == EXIT_CONFIG
