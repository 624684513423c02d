import pytest

from tenancy.core.errors import InvalidIdentifier
from tenancy.schema.naming import SchemaNamer, schema_name_for, validate_schema_name


def test_dashes_become_underscores():
    assert schema_name_for("abc-123") == "tenant_abc_123"


def test_every_unsafe_character_is_replaced():
    assert schema_name_for("Org.Name@Gym 1") == "tenant_org_name_gym_1"


def test_naming_is_deterministic():
    namer = SchemaNamer()
    assert namer.name_for("3f2c-aa-01") == namer.name_for("3f2c-aa-01")


def test_distinct_uuid_ids_never_collide():
    ids = [f"5e0b7c1a-{i:04d}-4d8f-9a11-{i * 7919:012d}" for i in range(500)]
    names = {schema_name_for(tenant_id) for tenant_id in ids}
    assert len(names) == len(ids)


def test_long_ids_are_truncated_with_hash_suffix():
    namer = SchemaNamer()
    long_id = "gym-" + "x" * 120
    name = namer.name_for(long_id)

    assert len(name) == 63
    assert name.startswith("tenant_gym_xxx")
    assert name == namer.name_for(long_id)


def test_long_ids_sharing_a_prefix_stay_distinct():
    namer = SchemaNamer()
    first = namer.name_for("a" * 100 + "-1")
    second = namer.name_for("a" * 100 + "-2")

    assert first != second
    assert first[:52] == second[:52]


def test_name_at_exact_limit_is_not_hashed():
    namer = SchemaNamer(max_length=20)
    assert namer.name_for("abcdefghijklm") == "tenant_abcdefghijklm"
    assert len(namer.name_for("abcdefghijklmn")) == 20
    assert namer.name_for("abcdefghijklmn") != "tenant_abcdefghijklm"


@pytest.mark.parametrize("tenant_id", ["", "   ", None])
def test_empty_ids_are_rejected(tenant_id):
    with pytest.raises(InvalidIdentifier):
        schema_name_for(tenant_id)


def test_detect_collisions_reports_ids_sharing_a_schema():
    namer = SchemaNamer()
    collisions = namer.detect_collisions(["a-b", "a_b", "c-d"])
    assert collisions == {"tenant_a_b": ["a-b", "a_b"]}


@pytest.mark.parametrize(
    "schema_name",
    ["public", "information_schema", "pg_catalog", "Tenant_a", "tenant-a", "1tenant", 'tenant_a"; drop', "t" * 64],
)
def test_validate_rejects_unsafe_or_reserved_names(schema_name):
    with pytest.raises(InvalidIdentifier):
        validate_schema_name(schema_name)


def test_validate_accepts_generated_names():
    assert validate_schema_name("tenant_abc_123") == "tenant_abc_123"


def test_prefix_must_be_an_identifier():
    with pytest.raises(InvalidIdentifier):
        SchemaNamer(prefix="Tenant-")
