import json
import logging

from tenancy.core.logging import RedactingFilter, StructuredFormatter, set_request_id, tenant_log_context


def _record(message, *args):
    return logging.LogRecord("tenancy.test", logging.INFO, __file__, 1, message, args, None)


def test_database_credentials_are_redacted():
    record = _record("Engine url=%s", "postgresql://app:s3cret@db:5432/fitness")

    RedactingFilter().filter(record)

    assert record.getMessage() == "Engine url=postgresql://app:***@db:5432/fitness"


def test_password_assignments_are_redacted():
    record = _record("login password=hunter2 ok")

    RedactingFilter().filter(record)

    assert "hunter2" not in record.getMessage()


def test_log_lines_carry_request_and_tenant_context():
    formatter = StructuredFormatter()
    set_request_id("req-1")

    with tenant_log_context("t1", "tenant_t1"):
        inside = json.loads(formatter.format(_record("copying")))
    outside = json.loads(formatter.format(_record("done")))

    assert inside["request_id"] == "req-1"
    assert (inside["tenant_id"], inside["schema_name"]) == ("t1", "tenant_t1")
    assert "tenant_id" not in outside
