#!/usr/bin/env python3
"""
Migrate tenants from the shared tables into one schema per tenant.

Provisions each pending tenant's schema, copies its rows, validates the counts
and records the schema in the tenant registry. Prints a per-tenant report and a
summary; exits 1 when any tenant failed, 2 on configuration errors.

    tenancy-migrate                       # every active, unmigrated tenant
    tenancy-migrate --tenant t1 --tenant t2 --dry-run
"""
import argparse
import signal
import sys
import threading
from typing import List, Optional, TextIO

from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from tenancy.core.config import ROW_FAILURE_POLICIES, settings
from tenancy.core.database import create_db_engine, session_factory
from tenancy.core.errors import TenancyError
from tenancy.core.logging import get_logger, setup_logging
from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.services.orchestrator import (
    OUTCOME_CANCELLED,
    OUTCOME_FAILED,
    OUTCOME_MIGRATED,
    OUTCOME_PLANNED,
    OUTCOME_SKIPPED,
    MigrationOrchestrator,
    MigrationSummary,
    TenantOutcome,
)

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

_MARKS = {
    OUTCOME_MIGRATED: "✓ MIGRATED",
    OUTCOME_FAILED: "✗ FAILED",
    OUTCOME_SKIPPED: "- SKIPPED",
    OUTCOME_CANCELLED: "- CANCELLED",
    OUTCOME_PLANNED: "· PLANNED",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenancy-migrate",
        description="Migrate shared-table tenants into schema-per-tenant storage.",
    )
    parser.add_argument(
        "--tenant",
        dest="tenants",
        action="append",
        metavar="ID",
        help="tenant id to migrate (repeatable; default: every active unmigrated tenant)",
    )
    parser.add_argument("--workers", type=int, default=None, help="tenants migrated in parallel")
    parser.add_argument("--batch-size", type=int, default=None, help="rows per insert transaction")
    parser.add_argument(
        "--failure-policy",
        choices=ROW_FAILURE_POLICIES,
        default=None,
        help="what to do with a row that cannot be written (default: %s)" % settings.MIGRATION_ROW_FAILURE_POLICY,
    )
    parser.add_argument("--dry-run", action="store_true", help="only count the rows that would be copied")
    parser.add_argument(
        "--include-migrated",
        action="store_true",
        help="re-run (and re-validate) tenants that already have a schema",
    )
    parser.add_argument("--database-url", default=None, help="overrides DATABASE_URL")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    return parser


def print_outcome(outcome: TenantOutcome, out: TextIO) -> None:
    print(f"\nTenant {outcome.tenant_id}  {_MARKS.get(outcome.status, outcome.status.upper())}", file=out)
    if outcome.schema_name:
        print(f"  schema:   {outcome.schema_name}", file=out)
    print(f"  phase:    {outcome.phase.value}", file=out)
    if outcome.reason:
        print(f"  reason:   {outcome.reason}", file=out)
    if outcome.error:
        print(f"  error:    {outcome.error_type}: {outcome.error}", file=out)

    if outcome.plan is not None:
        for table, count in outcome.plan.items():
            print(f"    {table:<20} {count:>8} rows to copy", file=out)

    if outcome.migration is not None:
        for table, stats in outcome.migration.tables.items():
            line = f"    {table:<20} read {stats.read:>6}  written {stats.written:>6}"
            if stats.skipped:
                line += f"  skipped {stats.skipped}"
            print(line, file=out)
        for error in outcome.migration.errors:
            print(f"    ! {error.table}[{error.row_id}] {error.reason}: {error.detail}", file=out)

    if outcome.validation is not None and not outcome.validation.ok:
        for mismatch in outcome.validation.mismatches:
            print(f"    ! {mismatch}", file=out)


def print_summary(summary: MigrationSummary, out: TextIO) -> None:
    for outcome in summary.outcomes:
        print_outcome(outcome, out)

    print("\n" + "=" * 70, file=out)
    print("DRY RUN COMPLETE" if summary.dry_run else "MIGRATION COMPLETE", file=out)
    print("=" * 70, file=out)
    print(f"Migrated:  {summary.migrated}", file=out)
    print(f"Failed:    {summary.failed}", file=out)
    print(f"Skipped:   {summary.skipped}", file=out)
    print(f"Cancelled: {summary.cancelled}", file=out)
    if summary.dry_run:
        print(f"Planned:   {summary.planned}", file=out)
    print("=" * 70, file=out)


def main(argv: Optional[List[str]] = None, engine: Optional[Engine] = None, out: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    out = out or sys.stdout
    setup_logging(args.log_level or settings.LOG_LEVEL)

    if args.workers is not None and args.workers < 1:
        print("--workers must be at least 1", file=sys.stderr)
        return EXIT_CONFIG
    if args.batch_size is not None and args.batch_size < 1:
        print("--batch-size must be at least 1", file=sys.stderr)
        return EXIT_CONFIG

    owns_engine = engine is None
    try:
        if engine is None:
            engine = create_db_engine(args.database_url)
    except (ArgumentError, ImportError, ValueError) as e:
        print(f"Invalid database URL: {e}", file=sys.stderr)
        return EXIT_CONFIG

    previous_handler = None
    try:
        registry = TenantRegistry(session_factory(engine))
        registry.ensure_registry_schema()
        orchestrator = MigrationOrchestrator.from_engine(
            engine,
            registry,
            batch_size=args.batch_size,
            failure_policy=args.failure_policy,
            max_workers=args.workers,
        )

        if threading.current_thread() is threading.main_thread():
            def _interrupt(signum, frame):
                print("\nCancellation requested; finishing tenants already in progress...", file=out)
                orchestrator.cancel()

            previous_handler = signal.signal(signal.SIGINT, _interrupt)

        summary = orchestrator.run(
            tenant_ids=args.tenants,
            include_migrated=args.include_migrated,
            dry_run=args.dry_run,
        )
    except (SQLAlchemyError, TenancyError) as e:
        logger.error(f"Migration run aborted: {e}", exc_info=True)
        print(f"Migration run aborted: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        if owns_engine:
            engine.dispose()

    print_summary(summary, out)
    return EXIT_OK if summary.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
