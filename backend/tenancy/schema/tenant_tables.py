"""
Canonical per-tenant table set (fitness domain).

Destination columns use the application's camelCase convention; values are read
from the legacy shared tables' snake_case columns unless ``source`` says otherwise.
"""
from sqlalchemy import Boolean, DateTime, Numeric, Text, false, func, text

from tenancy.schema.definitions import (
    ColumnDefinition as C,
    IndexDefinition,
    JSONDocument,
    TableDefinition,
    TableDefinitionSet,
    utcnow,
)


def _id() -> C:
    return C("id", Text(), primary_key=True)


def _timestamps():
    return (
        C("createdAt", DateTime(), nullable=False, server_default=func.now(), fallback=utcnow),
        C("updatedAt", DateTime(), nullable=False, server_default=func.now(), fallback=utcnow),
    )


def _json(name: str, empty: str) -> C:
    factory = dict if empty == "{}" else list
    return C(name, JSONDocument, nullable=False, server_default=text(f"'{empty}'"), fallback=factory)


USERS = TableDefinition(
    name="users",
    columns=(
        _id(),
        C("email", Text(), nullable=False, unique=True),
        C("password", Text(), nullable=False, source="password_hash"),
        C("firstName", Text(), nullable=False),
        C("lastName", Text(), nullable=False),
        C("phone", Text()),
        C("role", Text(), nullable=False),
        C("status", Text(), nullable=False, server_default=text("'ACTIVE'"), fallback="ACTIVE"),
        _json("profile", "{}"),
        C("lastLogin", DateTime()),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_users_email", ("email",)),),
)

MEMBERS = TableDefinition(
    name="members",
    columns=(
        _id(),
        C("userId", Text(), unique=True, references="users.id"),
        C("name", Text(), nullable=False),
        C("email", Text()),
        C("phone", Text()),
        C("membershipType", Text(), nullable=False),
        C("status", Text(), nullable=False, server_default=text("'active'"), fallback="active"),
        _json("biometricData", "{}"),
        _json("goals", "{}"),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_members_user_id", ("userId",)),),
)

WORKOUTS = TableDefinition(
    name="workouts",
    columns=(
        _id(),
        C("memberId", Text(), nullable=False, references="members.id"),
        C("userId", Text(), nullable=False, references="users.id"),
        C("name", Text(), nullable=False),
        C("description", Text()),
        _json("exercises", "[]"),
        C("aiGenerated", Boolean(), nullable=False, server_default=false(), fallback=False),
        C("completed", Boolean(), nullable=False, server_default=false(), fallback=False),
        C("completedAt", DateTime()),
        _json("feedback", "{}"),
        *_timestamps(),
    ),
    indexes=(
        IndexDefinition("ix_workouts_member_id", ("memberId",)),
        IndexDefinition("ix_workouts_user_id", ("userId",)),
    ),
)

AI_SESSIONS = TableDefinition(
    name="ai_sessions",
    columns=(
        _id(),
        C("userId", Text(), nullable=False, references="users.id"),
        C("agentType", Text(), nullable=False),
        _json("messages", "[]"),
        _json("context", "{}"),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_ai_sessions_user_id", ("userId",)),),
)

BIOMETRIC_DATA = TableDefinition(
    name="biometric_data",
    columns=(
        _id(),
        C("memberId", Text(), nullable=False, references="members.id"),
        C("dataType", Text(), nullable=False),
        C("value", Numeric(10, 2), nullable=False),
        C("unit", Text(), nullable=False),
        C("recordedAt", DateTime(), nullable=False),
        C("source", Text(), nullable=False),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_biometric_data_member_id", ("memberId",)),),
)

CHURN_PREDICTIONS = TableDefinition(
    name="churn_predictions",
    columns=(
        _id(),
        C("memberId", Text(), nullable=False, references="members.id"),
        C("churnProbability", Numeric(5, 4), nullable=False),
        _json("riskFactors", "[]"),
        _json("suggestedActions", "[]"),
        C("predictedAt", DateTime(), nullable=False, server_default=func.now(), fallback=utcnow),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_churn_predictions_member_id", ("memberId",)),),
)

CHAT_MESSAGES = TableDefinition(
    name="chat_messages",
    columns=(
        _id(),
        C("userId", Text(), nullable=False, references="users.id"),
        # Opaque conversation key, not a foreign key
        C("sessionId", Text(), nullable=False),
        C("content", Text(), nullable=False),
        C("role", Text(), nullable=False),
        _json("metadata", "{}"),
        *_timestamps(),
    ),
    indexes=(
        IndexDefinition("ix_chat_messages_user_id", ("userId",)),
        IndexDefinition("ix_chat_messages_session_id", ("sessionId",)),
    ),
)

REFRESH_TOKENS = TableDefinition(
    name="refresh_tokens",
    columns=(
        _id(),
        C("token", Text(), nullable=False, unique=True),
        C("userId", Text(), nullable=False, references="users.id"),
        C("expiresAt", DateTime(), nullable=False),
        *_timestamps(),
    ),
    indexes=(IndexDefinition("ix_refresh_tokens_user_id", ("userId",)),),
)


TENANT_TABLES = TableDefinitionSet([
    USERS,
    MEMBERS,
    WORKOUTS,
    AI_SESSIONS,
    BIOMETRIC_DATA,
    CHURN_PREDICTIONS,
    CHAT_MESSAGES,
    REFRESH_TOKENS,
])
