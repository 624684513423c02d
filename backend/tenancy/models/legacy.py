"""
Legacy shared tables (row-level multi-tenancy, disambiguated by tenant_id).

These are the read-side of the schema-per-tenant migration. Entity-to-entity
references were never enforced by constraints in the shared model, so orphaned
rows can exist and the migrator has to cope with them.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.sql import func

from tenancy.core.config import settings
from tenancy.core.database import Base
from tenancy.schema.definitions import JSONDocument

_SCHEMA = {"schema": settings.SHARED_SCHEMA}


def _tenant_fk() -> Column:
    target = f"{settings.SHARED_SCHEMA}.tenants.id" if settings.SHARED_SCHEMA else "tenants.id"
    return Column(Text, ForeignKey(target), nullable=False, index=True)


class LegacyUser(Base):
    __tablename__ = "users"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    email = Column(Text, nullable=False)
    password_hash = Column(Text, nullable=False)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    phone = Column(Text)
    role = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="ACTIVE")
    profile = Column(JSONDocument, default=dict)
    last_login = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class LegacyMember(Base):
    __tablename__ = "members"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    user_id = Column(Text, index=True)
    name = Column(Text, nullable=False)
    email = Column(Text)
    phone = Column(Text)
    membership_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="active")
    biometric_data = Column(JSONDocument, default=dict)
    goals = Column(JSONDocument, default=dict)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class LegacyWorkout(Base):
    __tablename__ = "workouts"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    member_id = Column(Text, nullable=False, index=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    exercises = Column(JSONDocument, default=list)
    ai_generated = Column(Boolean, default=False)
    completed = Column(Boolean, default=False)
    completed_at = Column(DateTime)
    feedback = Column(JSONDocument, default=dict)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class LegacyAiSession(Base):
    __tablename__ = "ai_sessions"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    user_id = Column(Text, nullable=False, index=True)
    agent_type = Column(Text, nullable=False)
    messages = Column(JSONDocument, default=list)
    context = Column(JSONDocument, default=dict)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class LegacyBiometricData(Base):
    __tablename__ = "biometric_data"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    member_id = Column(Text, nullable=False, index=True)
    data_type = Column(Text, nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    unit = Column(Text, nullable=False)
    recorded_at = Column(DateTime, nullable=False)
    source = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class LegacyChurnPrediction(Base):
    __tablename__ = "churn_predictions"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    member_id = Column(Text, nullable=False, index=True)
    churn_probability = Column(Numeric(5, 4), nullable=False)
    risk_factors = Column(JSONDocument, default=list)
    suggested_actions = Column(JSONDocument, default=list)
    predicted_at = Column(DateTime, server_default=func.now())
    created_at = Column(DateTime, server_default=func.now())


class LegacyChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    user_id = Column(Text, nullable=False, index=True)
    session_id = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    role = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    message_metadata = Column("metadata", JSONDocument, default=dict)
    created_at = Column(DateTime, server_default=func.now())


class LegacyRefreshToken(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = _SCHEMA

    id = Column(Text, primary_key=True)
    tenant_id = _tenant_fk()
    token = Column(Text, nullable=False, unique=True)
    user_id = Column(Text, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
