"""
Shared fixtures: an in-memory SQLite database holding the legacy shared tables
and the tenant registry. Tenant schemas are attached in-memory databases.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from tenancy.core.database import Base, create_db_engine, session_factory
from tenancy.models import (
    LegacyAiSession,
    LegacyBiometricData,
    LegacyChatMessage,
    LegacyChurnPrediction,
    LegacyMember,
    LegacyRefreshToken,
    LegacyUser,
    LegacyWorkout,
)
from tenancy.repositories import TenantRegistry
from tenancy.services import (
    DataMigrator,
    LegacySource,
    MigrationOrchestrator,
    MigrationValidator,
    SchemaProvisioner,
)

# Rows seeded per tenant by seed_fitness_data
SEEDED_COUNTS = {
    "users": 2,
    "members": 2,
    "workouts": 2,
    "ai_sessions": 1,
    "biometric_data": 2,
    "churn_predictions": 1,
    "chat_messages": 2,
    "refresh_tokens": 1,
}


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def Session(engine):
    return session_factory(engine)


@pytest.fixture
def registry(Session):
    return TenantRegistry(Session)


@pytest.fixture
def provisioner(engine):
    return SchemaProvisioner(engine)


@pytest.fixture
def source(engine):
    return LegacySource(engine)


@pytest.fixture
def migrator(engine, source):
    return DataMigrator(engine, source=source, batch_size=50, failure_policy="skip")


@pytest.fixture
def validator(engine, source):
    return MigrationValidator(engine, source=source)


@pytest.fixture
def orchestrator(engine, registry):
    # One worker: the in-memory database lives on a single shared connection
    return MigrationOrchestrator.from_engine(engine, registry, batch_size=50, failure_policy="skip", max_workers=1)


def seed_fitness_data(Session, tenant_id: str) -> None:
    """Two users with a member each, plus their workouts, sessions, metrics and tokens."""
    now = datetime(2024, 3, 1, 9, 30)
    p = tenant_id
    with Session() as db:
        db.add_all([
            LegacyUser(
                id=f"{p}-u1", tenant_id=tenant_id, email=f"owner@{p}.test", password_hash="hash-1",
                first_name="Ana", last_name="Silva", role="OWNER", status="ACTIVE",
                profile={"locale": "pt-BR"}, created_at=now, updated_at=now,
            ),
            LegacyUser(
                id=f"{p}-u2", tenant_id=tenant_id, email=f"coach@{p}.test", password_hash="hash-2",
                first_name="Bruno", last_name="Costa", role="TRAINER",
                profile=None, created_at=now, updated_at=now,
            ),
        ])
        db.flush()
        db.add_all([
            LegacyMember(
                id=f"{p}-m1", tenant_id=tenant_id, user_id=f"{p}-u1", name="Ana Silva",
                membership_type="premium", status="active", goals={"weight": 62},
            ),
            LegacyMember(
                id=f"{p}-m2", tenant_id=tenant_id, user_id=f"{p}-u2", name="Bruno Costa",
                membership_type="basic", status="active",
            ),
        ])
        db.flush()
        db.add_all([
            LegacyWorkout(
                id=f"{p}-w1", tenant_id=tenant_id, member_id=f"{p}-m1", user_id=f"{p}-u1",
                name="Leg day", exercises=[{"name": "squat", "sets": 5}], ai_generated=True,
            ),
            LegacyWorkout(
                id=f"{p}-w2", tenant_id=tenant_id, member_id=f"{p}-m2", user_id=f"{p}-u2",
                name="Cardio", completed=True, completed_at=now,
            ),
            LegacyAiSession(
                id=f"{p}-s1", tenant_id=tenant_id, user_id=f"{p}-u1", agent_type="nutrition",
                messages=[{"role": "user", "content": "hi"}],
            ),
            LegacyBiometricData(
                id=f"{p}-b1", tenant_id=tenant_id, member_id=f"{p}-m1", data_type="weight",
                value=Decimal("62.50"), unit="kg", recorded_at=now, source="manual",
            ),
            LegacyBiometricData(
                id=f"{p}-b2", tenant_id=tenant_id, member_id=f"{p}-m2", data_type="heart_rate",
                value=Decimal("71.00"), unit="bpm", recorded_at=now, source="wearable",
            ),
            LegacyChurnPrediction(
                id=f"{p}-c1", tenant_id=tenant_id, member_id=f"{p}-m2", churn_probability=Decimal("0.4200"),
                risk_factors=["attendance"], predicted_at=now,
            ),
            LegacyChatMessage(
                id=f"{p}-chat1", tenant_id=tenant_id, user_id=f"{p}-u1", session_id="conv-1",
                content="Hello", role="user", message_metadata={"channel": "app"},
            ),
            LegacyChatMessage(
                id=f"{p}-chat2", tenant_id=tenant_id, user_id=f"{p}-u1", session_id="conv-1",
                content="Hi Ana", role="assistant",
            ),
            LegacyRefreshToken(
                id=f"{p}-r1", tenant_id=tenant_id, token=f"token-{p}", user_id=f"{p}-u1",
                expires_at=now + timedelta(days=30),
            ),
        ])
        db.commit()


def add_orphan_workout(Session, tenant_id: str, workout_id: str = None) -> str:
    """A workout whose member does not exist for the tenant."""
    workout_id = workout_id or f"{tenant_id}-w-orphan"
    with Session() as db:
        db.add(LegacyWorkout(
            id=workout_id, tenant_id=tenant_id, member_id=f"{tenant_id}-m-missing",
            user_id=f"{tenant_id}-u1", name="Lost workout",
        ))
        db.commit()
    return workout_id


@pytest.fixture
def acme(registry, Session):
    """Active, unmigrated tenant with seeded legacy data."""
    tenant = registry.add_tenant("t1", "Acme Fitness", subdomain="acme")
    seed_fitness_data(Session, "t1")
    return tenant


@pytest.fixture
def globex(registry, Session):
    tenant = registry.add_tenant("t2", "Globex Gym", subdomain="globex", custom_domain="gym.globex.com")
    seed_fitness_data(Session, "t2")
    return tenant
