"""
Runtime tenant resolution: inbound host -> tenant -> schema-scoped database handle.

Lookups are served from an in-memory snapshot of the active tenants. The
snapshot is loaded synchronously on first use, then refreshed in the background
when it ages past the TTL or when an unknown host shows up (rate limited). A
failed first load is retried the same way as a miss. Registry writes (status,
schema name) patch the snapshot for that tenant immediately.
"""
import enum
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from sqlalchemy import Table, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from tenancy.core.config import settings
from tenancy.core.dialects import reset_search_path, set_search_path
from tenancy.core.errors import TenantNotFound, TenantNotReady
from tenancy.core.logging import get_logger
from tenancy.core.metrics import record_resolution, record_resolver_refresh
from tenancy.models.tenant import Tenant
from tenancy.repositories.tenant_repository import TenantRegistry
from tenancy.schema.definitions import TableDefinitionSet
from tenancy.schema.naming import validate_schema_name
from tenancy.schema.tenant_tables import TENANT_TABLES

logger = get_logger(__name__)


class ResolutionStatus(str, enum.Enum):
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class TenantSnapshot:
    """Plain copy of the registry row; safe to share between threads."""

    id: str
    name: str
    subdomain: Optional[str]
    custom_domain: Optional[str]
    schema_name: Optional[str]
    plan: str

    @classmethod
    def from_model(cls, tenant: Tenant) -> "TenantSnapshot":
        return cls(
            id=tenant.id,
            name=tenant.name,
            subdomain=tenant.subdomain.lower() if tenant.subdomain else None,
            custom_domain=tenant.custom_domain.lower() if tenant.custom_domain else None,
            schema_name=tenant.schema_name,
            plan=tenant.plan,
        )

    @property
    def is_ready(self) -> bool:
        return self.schema_name is not None


class ScopedHandle:
    """Database access bound to one tenant schema for the duration of a request.

    Unqualified tables (schema ``None``) are translated to the tenant schema on
    every connection handed out, and on PostgreSQL the connection's
    ``search_path`` is pointed at the schema as well (and reset on release).
    """

    def __init__(
        self,
        tenant_id: str,
        schema_name: str,
        engine: Engine,
        tables: TableDefinitionSet = TENANT_TABLES,
    ):
        self.tenant_id = tenant_id
        self.schema_name = validate_schema_name(schema_name)
        self.engine = engine
        self._tables = tables

    @property
    def tables(self) -> Dict[str, Table]:
        return {table.name: table for table in self._tables.tables(self.schema_name)}

    def table(self, name: str) -> Table:
        return self._tables.table(self.schema_name, name)

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        with self.engine.connect() as conn:
            conn.execution_options(schema_translate_map={None: self.schema_name})
            set_search_path(conn, self.schema_name)
            conn.commit()
            try:
                yield conn
            finally:
                conn.rollback()
                reset_search_path(conn)
                conn.commit()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """ORM session on a scoped connection; commits on success, rolls back on error."""
        with self.connect() as conn:
            db = Session(bind=conn, autoflush=False, expire_on_commit=False)
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def row_counts(self) -> Dict[str, int]:
        with self.connect() as conn:
            return {
                name: conn.execute(select(func.count()).select_from(table)).scalar_one()
                for name, table in self.tables.items()
            }

    def __repr__(self) -> str:
        return f"<ScopedHandle(tenant='{self.tenant_id}', schema='{self.schema_name}')>"


@dataclass
class Resolution:
    status: ResolutionStatus
    host: Optional[str] = None
    tenant: Optional[TenantSnapshot] = None
    handle: Optional[ScopedHandle] = None

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED

    def raise_for_status(self) -> ScopedHandle:
        if self.status is ResolutionStatus.NOT_FOUND:
            raise TenantNotFound(self.host or "")
        if self.status is ResolutionStatus.NOT_READY:
            raise TenantNotReady(self.tenant.id)
        return self.handle


def normalize_host(host: Optional[str]) -> str:
    """``Acme.Example.com:8443.`` -> ``acme.example.com``"""
    host = (host or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, never a tenant host
        return host.split("]", 1)[0] + "]"
    if ":" in host:
        host = host.rsplit(":", 1)[0]
    return host.strip(".")


class TenantResolver:
    """Maps hosts to tenants using a cached snapshot of the registry."""

    def __init__(
        self,
        registry: TenantRegistry,
        engine: Engine,
        *,
        tables: TableDefinitionSet = TENANT_TABLES,
        ttl_seconds: Optional[float] = None,
        miss_refresh_interval: Optional[float] = None,
        base_domain: Optional[str] = None,
        ignored_subdomains: Optional[List[str]] = None,
        refresh_in_background: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.engine = engine
        self.tables = tables
        self.ttl_seconds = settings.RESOLVER_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.miss_refresh_interval = (
            settings.RESOLVER_MISS_REFRESH_INTERVAL_SECONDS
            if miss_refresh_interval is None
            else miss_refresh_interval
        )
        base_domain = base_domain if base_domain is not None else settings.TENANT_BASE_DOMAIN
        self.base_domain = base_domain.strip(".").lower() if base_domain else None
        self.ignored_subdomains = frozenset(
            label.lower() for label in (ignored_subdomains if ignored_subdomains is not None else settings.ignored_subdomains)
        )
        self._clock = clock

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._by_id: Dict[str, TenantSnapshot] = {}
        self._by_domain: Dict[str, str] = {}
        self._by_subdomain: Dict[str, str] = {}
        self._handles: Dict[str, ScopedHandle] = {}
        self._loaded_at: Optional[float] = None
        self._last_refresh: Optional[float] = None
        self._refresh_pending = False
        self._refreshing = False
        self._changed_during_refresh: Dict[str, Optional[TenantSnapshot]] = {}

        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="tenant-resolver")
            if refresh_in_background
            else None
        )
        registry.add_listener(self._on_tenant_changed)

    # ------------------------------------------------------------------ lookups

    def resolve(self, host: Optional[str]) -> Resolution:
        normalized = normalize_host(host)
        self._ensure_loaded()

        tenant = self._match_host(normalized)
        if tenant is None:
            self._schedule_refresh("miss")
            return self._result(ResolutionStatus.NOT_FOUND, normalized)
        return self._resolved(tenant, normalized)

    def resolve_tenant_id(self, tenant_id: str) -> Resolution:
        """Lookup by tenant id (explicit tenant header)."""
        self._ensure_loaded()
        with self._lock:
            tenant = self._by_id.get(tenant_id)
        if tenant is None:
            self._schedule_refresh("miss")
            return self._result(ResolutionStatus.NOT_FOUND, tenant_id)
        return self._resolved(tenant, tenant_id)

    def _match_host(self, host: str) -> Optional[TenantSnapshot]:
        if not host:
            return None
        with self._lock:
            tenant_id = self._by_domain.get(host)
            if tenant_id is None:
                label = self._subdomain_label(host)
                if label is not None:
                    tenant_id = self._by_subdomain.get(label)
            return self._by_id.get(tenant_id) if tenant_id else None

    def _subdomain_label(self, host: str) -> Optional[str]:
        if self.base_domain:
            suffix = "." + self.base_domain
            if not host.endswith(suffix):
                return None
            label = host[: -len(suffix)]
            if "." in label:
                return None
        else:
            labels = host.split(".")
            if len(labels) < 2:
                return None
            label = labels[0]
        if not label or label in self.ignored_subdomains:
            return None
        return label

    def _resolved(self, tenant: TenantSnapshot, key: str) -> Resolution:
        if not tenant.is_ready:
            return self._result(ResolutionStatus.NOT_READY, key, tenant)
        return self._result(ResolutionStatus.RESOLVED, key, tenant, self._handle_for(tenant))

    def _handle_for(self, tenant: TenantSnapshot) -> ScopedHandle:
        with self._lock:
            handle = self._handles.get(tenant.id)
            if handle is None or handle.schema_name != tenant.schema_name:
                handle = ScopedHandle(tenant.id, tenant.schema_name, self.engine, self.tables)
                self._handles[tenant.id] = handle
            return handle

    @staticmethod
    def _result(
        status: ResolutionStatus,
        host: str,
        tenant: Optional[TenantSnapshot] = None,
        handle: Optional[ScopedHandle] = None,
    ) -> Resolution:
        record_resolution(status.value)
        return Resolution(status=status, host=host, tenant=tenant, handle=handle)

    # ------------------------------------------------------------------ snapshot

    def refresh(self, trigger: str = "manual") -> int:
        """Reload every active tenant from the registry. Returns the number loaded."""
        with self._refresh_lock:
            with self._lock:
                self._refreshing = True
                self._changed_during_refresh = {}
            try:
                tenants = [TenantSnapshot.from_model(t) for t in self.registry.list_active_tenants()]
            except Exception:
                record_resolver_refresh(trigger, "error")
                with self._lock:
                    self._refreshing = False
                    self._last_refresh = self._clock()
                raise

            with self._lock:
                self._by_id = {}
                self._by_domain = {}
                self._by_subdomain = {}
                for tenant in tenants:
                    self._index(tenant)
                # Registry writes that landed while the list was being read win
                for tenant_id, snapshot in self._changed_during_refresh.items():
                    self._apply(tenant_id, snapshot)
                self._handles = {
                    tenant_id: handle
                    for tenant_id, handle in self._handles.items()
                    if tenant_id in self._by_id
                }
                self._refreshing = False
                self._loaded_at = self._last_refresh = self._clock()

        record_resolver_refresh(trigger, "ok")
        logger.debug("Tenant resolver snapshot refreshed trigger=%s tenants=%d", trigger, len(tenants))
        return len(tenants)

    def invalidate(self, tenant_id: str) -> None:
        """Drop a tenant from the snapshot and reload just that tenant.

        The tenant stays evicted when the reload fails.
        """
        with self._lock:
            self._record_change(tenant_id, None)

        tenant = self.registry.get_by_id(tenant_id)
        if tenant is None or not tenant.is_active:
            return
        with self._lock:
            self._record_change(tenant_id, TenantSnapshot.from_model(tenant))

    def close(self) -> None:
        self.registry.remove_listener(self._on_tenant_changed)
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)

    def _on_tenant_changed(self, tenant_id: str, change: str) -> None:
        logger.debug("Tenant %s changed (%s); updating resolver snapshot", tenant_id, change)
        self.invalidate(tenant_id)

    def _ensure_loaded(self) -> None:
        if self._loaded_at is None:
            if self._last_refresh is None:
                self._initial_load()
            else:
                # An earlier load failed: retry off the request path, rate limited
                self._schedule_refresh("initial")
        elif self._clock() - self._loaded_at >= self.ttl_seconds:
            self._schedule_refresh("ttl", rate_limited=False)

    def _initial_load(self) -> None:
        try:
            self.refresh("initial")
        except Exception:
            # Lookups miss until a scheduled refresh succeeds
            logger.error("Initial tenant resolver load failed", exc_info=True)

    def _schedule_refresh(self, trigger: str, rate_limited: bool = True) -> None:
        now = self._clock()
        with self._lock:
            if self._refresh_pending:
                return
            if (
                rate_limited
                and self._last_refresh is not None
                and now - self._last_refresh < self.miss_refresh_interval
            ):
                return
            self._refresh_pending = True

        if self._executor is None:
            self._background_refresh(trigger)
        else:
            self._executor.submit(self._background_refresh, trigger)

    def _background_refresh(self, trigger: str) -> None:
        try:
            self.refresh(trigger)
        except Exception:
            # Keep serving the previous snapshot
            logger.error("Tenant resolver refresh failed trigger=%s", trigger, exc_info=True)
        finally:
            with self._lock:
                self._refresh_pending = False

    def _index(self, tenant: TenantSnapshot) -> None:
        self._by_id[tenant.id] = tenant
        if tenant.custom_domain:
            self._by_domain[tenant.custom_domain] = tenant.id
        if tenant.subdomain:
            self._by_subdomain[tenant.subdomain] = tenant.id

    def _record_change(self, tenant_id: str, snapshot: Optional[TenantSnapshot]) -> None:
        self._apply(tenant_id, snapshot)
        if self._refreshing:
            self._changed_during_refresh[tenant_id] = snapshot

    def _apply(self, tenant_id: str, snapshot: Optional[TenantSnapshot]) -> None:
        previous = self._by_id.pop(tenant_id, None)
        if previous is not None:
            if previous.custom_domain and self._by_domain.get(previous.custom_domain) == tenant_id:
                del self._by_domain[previous.custom_domain]
            if previous.subdomain and self._by_subdomain.get(previous.subdomain) == tenant_id:
                del self._by_subdomain[previous.subdomain]
        self._handles.pop(tenant_id, None)
        if snapshot is not None:
            self._index(snapshot)
