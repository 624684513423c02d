from tenancy.schema.definitions import (
    ColumnDefinition,
    IndexDefinition,
    TableDefinition,
    TableDefinitionSet,
)
from tenancy.schema.naming import SchemaNamer, schema_name_for, validate_schema_name
from tenancy.schema.tenant_tables import TENANT_TABLES

__all__ = [
    "ColumnDefinition",
    "IndexDefinition",
    "TableDefinition",
    "TableDefinitionSet",
    "SchemaNamer",
    "schema_name_for",
    "validate_schema_name",
    "TENANT_TABLES",
]
