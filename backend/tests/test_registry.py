import pytest
from sqlalchemy import inspect

from tenancy.core.database import create_db_engine, session_factory
from tenancy.core.errors import AlreadyMigrated, InvalidIdentifier, TenantRegistryError
from tenancy.repositories import TenantRegistry


def test_add_tenant_normalizes_hostnames(registry):
    tenant = registry.add_tenant("t9", "Nine", subdomain=" Nine ", custom_domain="Gym.Nine.COM.")

    assert tenant.subdomain == "nine"
    assert tenant.custom_domain == "gym.nine.com"
    assert tenant.is_active
    assert not tenant.is_migrated


def test_add_tenant_needs_a_hostname(registry):
    with pytest.raises(TenantRegistryError):
        registry.add_tenant("t9", "Nowhere")


def test_duplicate_subdomain_is_rejected(registry, acme):
    with pytest.raises(TenantRegistryError):
        registry.add_tenant("t9", "Copycat", subdomain="acme")


def test_set_schema_name_is_write_once(registry, acme):
    registry.set_schema_name("t1", "tenant_t1")

    assert registry.set_schema_name("t1", "tenant_t1").schema_name == "tenant_t1"
    with pytest.raises(AlreadyMigrated) as excinfo:
        registry.set_schema_name("t1", "tenant_other")
    assert excinfo.value.current == "tenant_t1"
    assert registry.get_by_id("t1").schema_name == "tenant_t1"


def test_set_schema_name_validates_the_name(registry, acme):
    with pytest.raises(InvalidIdentifier):
        registry.set_schema_name("t1", "public")
    assert registry.get_by_id("t1").schema_name is None


def test_schema_name_belongs_to_one_tenant(registry, acme, globex):
    registry.set_schema_name("t1", "tenant_t1")

    with pytest.raises(TenantRegistryError):
        registry.set_schema_name("t2", "tenant_t1")
    assert registry.get_by_id("t2").schema_name is None


def test_set_schema_name_for_unknown_tenant(registry):
    with pytest.raises(TenantRegistryError):
        registry.set_schema_name("missing", "tenant_missing")


def test_inactive_tenants_are_invisible_to_host_lookups(registry, globex):
    assert registry.get_by_subdomain("globex").id == "t2"
    assert registry.get_by_custom_domain("gym.globex.com").id == "t2"

    registry.set_status("t2", "inactive")

    assert registry.get_by_subdomain("globex") is None
    assert registry.get_by_custom_domain("gym.globex.com") is None
    assert registry.get_by_id("t2").status == "inactive"


def test_host_lookups_ignore_case(registry, globex):
    assert registry.get_by_subdomain("GLOBEX").id == "t2"
    assert registry.get_by_custom_domain("Gym.Globex.com.").id == "t2"
    assert registry.get_by_subdomain("") is None


def test_set_status_rejects_unknown_values(registry, acme):
    with pytest.raises(TenantRegistryError):
        registry.set_status("t1", "suspended")
    with pytest.raises(TenantRegistryError):
        registry.set_status("missing", "inactive")


def test_listeners_hear_about_committed_changes(registry, acme):
    changes = []
    registry.add_listener(lambda tenant_id, change: changes.append((tenant_id, change)))

    registry.set_status("t1", "inactive")
    registry.set_status("t1", "inactive")
    registry.set_schema_name("t1", "tenant_t1")

    assert changes == [("t1", "status"), ("t1", "schema_name")]


def test_broken_listener_does_not_fail_the_write(registry, acme):
    def explode(tenant_id, change):
        raise RuntimeError("cache is gone")

    registry.add_listener(explode)

    assert registry.set_status("t1", "inactive").status == "inactive"


def test_listing_active_and_pending(registry, acme, globex):
    registry.add_tenant("t3", "Dormant", subdomain="dormant", status="inactive")
    registry.set_schema_name("t1", "tenant_t1")

    assert [t.id for t in registry.list_all()] == ["t1", "t2", "t3"]
    assert [t.id for t in registry.list_active_tenants()] == ["t1", "t2"]
    assert [t.id for t in registry.list_pending_tenants()] == ["t2"]


def test_ensure_registry_schema_upgrades_a_legacy_table():
    engine = create_db_engine("sqlite://", echo=False)
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(
                "CREATE TABLE tenants ("
                "id VARCHAR(64) PRIMARY KEY, name VARCHAR(255) NOT NULL, subdomain VARCHAR(63), "
                "custom_domain VARCHAR(255), status VARCHAR(20) NOT NULL, plan VARCHAR(50) NOT NULL, "
                "created_at DATETIME, updated_at DATETIME)"
            )
            conn.exec_driver_sql(
                "INSERT INTO tenants (id, name, subdomain, status, plan) "
                "VALUES ('old', 'Old Gym', 'old', 'active', 'starter')"
            )
        registry = TenantRegistry(session_factory(engine))

        registry.ensure_registry_schema()
        registry.ensure_registry_schema()

        inspector = inspect(engine)
        assert "schema_name" in {column["name"] for column in inspector.get_columns("tenants")}
        assert "ix_tenants_schema_name" in {index["name"] for index in inspector.get_indexes("tenants")}
        assert [t.id for t in registry.list_pending_tenants()] == ["old"]
    finally:
        engine.dispose()


def test_ensure_registry_schema_creates_a_missing_table():
    engine = create_db_engine("sqlite://", echo=False)
    try:
        registry = TenantRegistry(session_factory(engine))
        registry.ensure_registry_schema()

        assert inspect(engine).has_table("tenants")
        assert registry.list_all() == []
    finally:
        engine.dispose()
