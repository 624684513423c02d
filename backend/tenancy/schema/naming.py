"""
Tenant id -> schema name mapping.

Both the migration run and the request resolver derive schema names through
this module, so the two can never disagree.
"""
import hashlib
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from tenancy.core.config import settings
from tenancy.core.errors import InvalidIdentifier

SCHEMA_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
RESERVED_PREFIXES = ("pg_",)
RESERVED_NAMES = frozenset({"public", "information_schema", "main", "temp"})
HASH_SUFFIX_LENGTH = 10

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]")


class SchemaNamer:
    """Deterministic, side-effect free tenant id -> schema name mapping.

    ``abc-123`` becomes ``tenant_abc_123``. Ids whose name would exceed
    ``max_length`` bytes are truncated and suffixed with ``_`` plus the first
    ten hex digits of the SHA-256 of the raw id, so the result is still unique
    and exactly ``max_length`` long.
    """

    def __init__(self, prefix: Optional[str] = None, max_length: Optional[int] = None) -> None:
        self.prefix = settings.TENANT_SCHEMA_PREFIX if prefix is None else prefix
        self.max_length = settings.SCHEMA_NAME_MAX_LENGTH if max_length is None else max_length
        if not SCHEMA_NAME_RE.match(self.prefix):
            raise InvalidIdentifier(self.prefix, "schema prefix must be a lowercase identifier")
        if self.max_length <= len(self.prefix) + HASH_SUFFIX_LENGTH + 1:
            raise InvalidIdentifier(self.prefix, f"max_length {self.max_length} leaves no room for the tenant id")

    def name_for(self, tenant_id: str) -> str:
        if tenant_id is None or not str(tenant_id).strip():
            raise InvalidIdentifier(str(tenant_id), "tenant id is empty")

        raw = str(tenant_id)
        name = self.prefix + _UNSAFE_CHARS.sub("_", raw.lower())
        if len(name) > self.max_length:
            digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:HASH_SUFFIX_LENGTH]
            name = f"{name[:self.max_length - HASH_SUFFIX_LENGTH - 1]}_{digest}"
        return self.validate(name)

    def validate(self, schema_name: str) -> str:
        return validate_schema_name(schema_name, max_length=self.max_length)

    def detect_collisions(self, tenant_ids: Iterable[str]) -> Dict[str, List[str]]:
        """Schema names claimed by more than one tenant id (e.g. ``a-b`` and ``a_b``)."""
        claims: Dict[str, List[str]] = defaultdict(list)
        for tenant_id in tenant_ids:
            claims[self.name_for(tenant_id)].append(tenant_id)
        return {name: ids for name, ids in claims.items() if len(ids) > 1}


def validate_schema_name(schema_name: str, max_length: Optional[int] = None) -> str:
    """Boundary check for any schema name about to reach DDL or a search path."""
    max_length = settings.SCHEMA_NAME_MAX_LENGTH if max_length is None else max_length
    if not schema_name:
        raise InvalidIdentifier(str(schema_name), "schema name is empty")
    if len(schema_name.encode("utf-8")) > max_length:
        raise InvalidIdentifier(schema_name, f"longer than {max_length} bytes")
    if not SCHEMA_NAME_RE.match(schema_name):
        raise InvalidIdentifier(schema_name, "only lowercase letters, digits and '_' are allowed")
    if schema_name in RESERVED_NAMES or schema_name.startswith(RESERVED_PREFIXES):
        raise InvalidIdentifier(schema_name, "reserved schema name")
    return schema_name


default_namer = SchemaNamer()


def schema_name_for(tenant_id: str) -> str:
    return default_namer.name_for(tenant_id)
