import pytest
from sqlalchemy import Text

from tenancy.schema.definitions import (
    ColumnDefinition as C,
    IndexDefinition,
    TableDefinition,
    TableDefinitionSet,
    to_snake_case,
)
from tenancy.schema.tenant_tables import TENANT_TABLES


def test_canonical_table_order():
    assert TENANT_TABLES.names == [
        "users",
        "members",
        "workouts",
        "ai_sessions",
        "biometric_data",
        "churn_predictions",
        "chat_messages",
        "refresh_tokens",
    ]


def test_parents_are_declared_before_children():
    seen = set()
    for definition in TENANT_TABLES:
        assert set(definition.parents) <= seen | {definition.name}
        seen.add(definition.name)


def test_every_table_has_timestamps():
    for definition in TENANT_TABLES:
        created = definition.column("createdAt")
        updated = definition.column("updatedAt")
        assert not created.nullable and created.server_default is not None
        assert not updated.nullable and updated.server_default is not None


def test_source_columns_default_to_snake_case():
    users = TENANT_TABLES.get("users")
    assert users.column("firstName").source_name == "first_name"
    assert users.column("password").source_name == "password_hash"
    assert TENANT_TABLES.get("chat_messages").column("sessionId").source_name == "session_id"
    assert to_snake_case("churnProbability") == "churn_probability"


def test_bind_schema_places_tables_and_foreign_keys_in_the_schema():
    workouts = TENANT_TABLES.table("tenant_abc", "workouts")

    assert workouts.schema == "tenant_abc"
    targets = {fk.column.table.fullname for fk in workouts.foreign_keys}
    assert targets == {"tenant_abc.members", "tenant_abc.users"}
    assert {ix.name for ix in workouts.indexes} == {"ix_workouts_member_id", "ix_workouts_user_id"}


def test_bound_schemas_are_independent():
    first = TENANT_TABLES.table("tenant_one", "users")
    second = TENANT_TABLES.table("tenant_two", "users")
    assert first is not second
    assert TENANT_TABLES.table("tenant_one", "users") is first


def test_child_declared_before_parent_is_rejected():
    parent = TableDefinition("parents", (C("id", Text(), primary_key=True),))
    child = TableDefinition(
        "children",
        (C("id", Text(), primary_key=True), C("parentId", Text(), references="parents.id")),
    )
    with pytest.raises(ValueError, match="not declared before"):
        TableDefinitionSet([child, parent])


def test_table_without_primary_key_is_rejected():
    with pytest.raises(ValueError, match="no primary key"):
        TableDefinitionSet([TableDefinition("loose", (C("name", Text()),))])


def test_index_on_unknown_column_is_rejected():
    table = TableDefinition(
        "things",
        (C("id", Text(), primary_key=True),),
        indexes=(IndexDefinition("ix_things_missing", ("missing",)),),
    )
    with pytest.raises(KeyError):
        TableDefinitionSet([table])
