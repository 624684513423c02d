"""
Tenant registry: the durable record of which tenants exist and which are migrated.
"""
import threading
from typing import Callable, List, Optional

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenancy.core.dialects import qualified_name, quote_identifier
from tenancy.core.errors import AlreadyMigrated, TenantRegistryError
from tenancy.core.logging import get_logger
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.repositories.base_repository import BaseRepository
from tenancy.schema.naming import validate_schema_name

logger = get_logger(__name__)

# (tenant_id, change) where change is "status" or "schema_name"
TenantChangeListener = Callable[[str, str], None]


class TenantRegistry(BaseRepository[Tenant]):
    """CRUD and listing over tenant metadata"""

    def __init__(self, session_factory):
        super().__init__(Tenant, session_factory)
        self._listeners: List[TenantChangeListener] = []
        self._listeners_lock = threading.Lock()

    # ------------------------------------------------------------------ bootstrap

    def ensure_registry_schema(self) -> None:
        """Create the tenants table, or add the schema_name column and lookup indexes to a legacy one."""
        table = Tenant.__table__
        with self.session() as db:
            conn = db.connection()
            inspector = inspect(conn)
            if not inspector.has_table(table.name, schema=table.schema):
                table.create(conn)
                logger.info("Created tenant registry table")
                return

            columns = {column["name"] for column in inspector.get_columns(table.name, schema=table.schema)}
            if "schema_name" not in columns:
                target = (
                    qualified_name(conn.dialect, table.schema, table.name)
                    if table.schema
                    else quote_identifier(conn.dialect, table.name)
                )
                conn.exec_driver_sql(f"ALTER TABLE {target} ADD COLUMN schema_name VARCHAR(63)")
                logger.info("Added schema_name column to tenant registry")

            existing = {index["name"] for index in inspect(conn).get_indexes(table.name, schema=table.schema)}
            for index in sorted(table.indexes, key=lambda ix: ix.name):
                if index.name not in existing:
                    index.create(conn)
                    logger.info("Created tenant registry index %s", index.name)

    # ------------------------------------------------------------------ reads

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self.get(tenant_id)

    def list_all(self) -> List[Tenant]:
        with self.session() as db:
            return list(db.scalars(select(Tenant).order_by(Tenant.created_at, Tenant.id)))

    def list_active_tenants(self) -> List[Tenant]:
        with self.session() as db:
            return list(
                db.scalars(
                    select(Tenant)
                    .where(Tenant.status == TenantStatus.ACTIVE.value)
                    .order_by(Tenant.created_at, Tenant.id)
                )
            )

    def list_pending_tenants(self) -> List[Tenant]:
        """Active tenants that have not been assigned a schema yet"""
        return [tenant for tenant in self.list_active_tenants() if tenant.schema_name is None]

    def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        """Active tenant owning ``subdomain``; inactive tenants are invisible."""
        if not subdomain:
            return None
        with self.session() as db:
            return db.scalars(
                select(Tenant).where(
                    func.lower(Tenant.subdomain) == subdomain.strip().lower(),
                    Tenant.status == TenantStatus.ACTIVE.value,
                )
            ).first()

    def get_by_custom_domain(self, domain: str) -> Optional[Tenant]:
        """Active tenant owning ``domain``; inactive tenants are invisible."""
        if not domain:
            return None
        with self.session() as db:
            return db.scalars(
                select(Tenant).where(
                    func.lower(Tenant.custom_domain) == domain.strip().strip(".").lower(),
                    Tenant.status == TenantStatus.ACTIVE.value,
                )
            ).first()

    # ------------------------------------------------------------------ writes

    def add_tenant(
        self,
        tenant_id: str,
        name: str,
        *,
        subdomain: Optional[str] = None,
        custom_domain: Optional[str] = None,
        status: str = TenantStatus.ACTIVE.value,
        plan: str = "starter",
    ) -> Tenant:
        """Register a tenant (normally done by the signup flow)"""
        if not subdomain and not custom_domain:
            raise TenantRegistryError(f"tenant {tenant_id!r} needs a subdomain or a custom domain")
        tenant = Tenant(
            id=tenant_id,
            name=name,
            subdomain=subdomain.strip().lower() if subdomain else None,
            custom_domain=custom_domain.strip().strip(".").lower() if custom_domain else None,
            status=TenantStatus(status).value,
            plan=plan,
        )
        try:
            with self.session() as db:
                db.add(tenant)
                db.flush()
                db.refresh(tenant)
        except IntegrityError as exc:
            raise TenantRegistryError(f"tenant {tenant_id!r} conflicts with an existing tenant") from exc
        return tenant

    def set_schema_name(self, tenant_id: str, schema_name: str) -> Tenant:
        """Assign the tenant's schema. Write-once: same value is a no-op, a different one fails."""
        validate_schema_name(schema_name)
        try:
            with self.session() as db:
                tenant = db.get(Tenant, tenant_id, with_for_update=True)
                if tenant is None:
                    raise TenantRegistryError(f"unknown tenant {tenant_id!r}")
                if tenant.schema_name == schema_name:
                    return tenant
                if tenant.schema_name is not None:
                    raise AlreadyMigrated(tenant_id, tenant.schema_name, schema_name)
                tenant.schema_name = schema_name
                db.flush()
                db.refresh(tenant)
        except IntegrityError as exc:
            raise TenantRegistryError(
                f"schema {schema_name!r} is already assigned to another tenant"
            ) from exc
        except SQLAlchemyError as exc:
            raise TenantRegistryError(f"could not assign schema to tenant {tenant_id!r}: {exc}") from exc

        logger.info("Tenant %s assigned schema %s", tenant_id, schema_name)
        self._notify(tenant_id, "schema_name")
        return tenant

    def set_status(self, tenant_id: str, status: str) -> Tenant:
        try:
            new_status = TenantStatus(status).value
        except ValueError as exc:
            raise TenantRegistryError(f"unknown tenant status {status!r}") from exc

        try:
            with self.session() as db:
                tenant = db.get(Tenant, tenant_id, with_for_update=True)
                if tenant is None:
                    raise TenantRegistryError(f"unknown tenant {tenant_id!r}")
                previous = tenant.status
                tenant.status = new_status
                db.flush()
                db.refresh(tenant)
        except SQLAlchemyError as exc:
            raise TenantRegistryError(f"could not update status of tenant {tenant_id!r}: {exc}") from exc

        if previous != new_status:
            logger.info("Tenant %s status %s -> %s", tenant_id, previous, new_status)
            self._notify(tenant_id, "status")
        return tenant

    # ------------------------------------------------------------------ change listeners

    def add_listener(self, listener: TenantChangeListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: TenantChangeListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, tenant_id: str, change: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(tenant_id, change)
            except Exception:
                # The write is already committed; a broken cache must not turn it into an error
                logger.error("Tenant change listener failed tenant=%s change=%s", tenant_id, change, exc_info=True)
