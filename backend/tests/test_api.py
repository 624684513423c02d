import pytest
from fastapi.testclient import TestClient

from tenancy.main import create_app
from tenancy.services import TenantResolver
from tests.conftest import SEEDED_COUNTS


@pytest.fixture
def resolver(registry, engine):
    resolver = TenantResolver(
        registry,
        engine,
        base_domain="example.com",
        ignored_subdomains=["www"],
        refresh_in_background=False,
    )
    yield resolver
    resolver.close()


@pytest.fixture
def client(engine, resolver):
    app = create_app(engine=engine, resolver=resolver)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def migrated(orchestrator, acme, globex):
    summary = orchestrator.run(["t1"])
    assert summary.ok
    return summary


def test_health_needs_no_tenant(client):
    response = client.get("/health", headers={"host": "unknown.example.com"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_metrics_are_exposed(migrated, client):
    client.get("/api/v1/tenant", headers={"host": "acme.example.com"})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "tenant_resolutions_total" in response.text
    assert "tenant_migrations_total" in response.text


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/health").headers["X-Request-ID"]
    assert generated


def test_tenant_host_is_served_from_its_schema(migrated, client):
    response = client.get("/api/v1/tenant", headers={"host": "acme.example.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "t1"
    assert body["schema_name"] == "tenant_t1"
    assert body["row_counts"] == SEEDED_COUNTS


def test_unknown_host_is_a_404(migrated, client):
    response = client.get("/api/v1/tenant", headers={"host": "notfound.example.com"})

    assert response.status_code == 404
    assert response.json() == {"detail": "Tenant not found", "host": "notfound.example.com"}


def test_unmigrated_tenant_is_a_503(migrated, client):
    response = client.get("/api/v1/tenant", headers={"host": "globex.example.com"})

    assert response.status_code == 503
    assert response.json()["tenant"] == "t2"
    assert "Retry-After" in response.headers


def test_deactivated_tenant_is_rejected(registry, migrated, client):
    assert client.get("/api/v1/tenant", headers={"host": "acme.example.com"}).status_code == 200

    registry.set_status("t1", "inactive")

    assert client.get("/api/v1/tenant", headers={"host": "acme.example.com"}).status_code == 404


def test_admin_lists_tenants(migrated, client):
    response = client.get("/api/v1/admin/tenants")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["migrated"] == 1
    by_id = {tenant["id"]: tenant for tenant in body["tenants"]}
    assert by_id["t1"]["schema_name"] == "tenant_t1"
    assert by_id["t2"]["schema_name"] is None


def test_admin_validation_report(migrated, client):
    response = client.get("/api/v1/admin/tenants/t1/validation")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"]
    assert body["found_tables"] == len(SEEDED_COUNTS)
    assert body["counts"]["users"] == {"source": 2, "destination": 2, "skipped": 0, "matches": True}


def test_admin_validation_of_unmigrated_or_unknown_tenants(migrated, client):
    assert client.get("/api/v1/admin/tenants/t2/validation").status_code == 409
    assert client.get("/api/v1/admin/tenants/ghost/validation").status_code == 404
