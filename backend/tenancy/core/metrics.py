"""Prometheus metrics helpers for tenant migration and request resolution."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


tenant_migrations_total = Counter(
    "tenant_migrations_total",
    "Tenant migration outcomes",
    labelnames=("outcome",),
)

tenant_phase_transitions_total = Counter(
    "tenant_phase_transitions_total",
    "Tenant migration phase transitions",
    labelnames=("from_phase", "to_phase"),
)

tenant_migration_duration_seconds = Histogram(
    "tenant_migration_duration_seconds",
    "Wall time spent migrating a single tenant",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600, 1800),
)

migrated_rows_total = Counter(
    "migrated_rows_total",
    "Rows upserted into tenant schemas",
    labelnames=("table",),
)

skipped_rows_total = Counter(
    "skipped_rows_total",
    "Rows skipped during migration (orphans or failed writes)",
    labelnames=("table", "reason"),
)

tenant_resolutions_total = Counter(
    "tenant_resolutions_total",
    "Tenant resolution results for inbound hosts",
    labelnames=("result",),
)

resolver_refreshes_total = Counter(
    "resolver_refreshes_total",
    "Tenant resolver snapshot refreshes",
    labelnames=("trigger", "status"),
)


def record_migration_outcome(outcome: str) -> None:
    tenant_migrations_total.labels(outcome=outcome).inc()


def record_phase_transition(previous: str, new: str) -> None:
    tenant_phase_transitions_total.labels(from_phase=previous, to_phase=new).inc()


def observe_migration_duration(duration_seconds: float) -> None:
    tenant_migration_duration_seconds.observe(max(duration_seconds, 0.0))


def record_migrated_rows(table: str, rows: int) -> None:
    migrated_rows_total.labels(table=table).inc(max(rows, 0))


def record_skipped_rows(table: str, reason: str, rows: int = 1) -> None:
    skipped_rows_total.labels(table=table, reason=reason or "unknown").inc(max(rows, 0))


def record_resolution(result: str) -> None:
    tenant_resolutions_total.labels(result=result).inc()


def record_resolver_refresh(trigger: str, status: str) -> None:
    resolver_refreshes_total.labels(trigger=trigger, status=status).inc()
