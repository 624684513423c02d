"""
Declarative per-tenant table definitions.

A ``TableDefinitionSet`` is the single source of truth consumed by the
provisioner (DDL), the migrator (column mapping, insert order) and the
validator (expected structure). Declared order is the foreign-key dependency
order: parents always come before the tables that reference them.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import JSON, Column, ForeignKey, Index, MetaData, Table
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql.elements import ClauseElement
from sqlalchemy.types import TypeEngine

# JSONB on PostgreSQL, JSON text elsewhere. Payloads pass through opaque.
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(name: str) -> str:
    """``firstName`` -> ``first_name`` (legacy shared-table convention)."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class ColumnDefinition:
    """One destination column and where its value comes from in the shared table.

    ``fallback`` fills NULL source values for NOT NULL columns (a value or a
    zero-argument callable); without it a NULL reaches the database as-is. A
    fallback only applies when a row is first inserted, never on a re-run.
    """

    name: str
    type_: TypeEngine
    primary_key: bool = False
    nullable: bool = True
    unique: bool = False
    server_default: Optional[ClauseElement] = None
    references: Optional[str] = None
    on_delete: str = "CASCADE"
    source: Optional[str] = None
    fallback: Any = None

    @property
    def source_name(self) -> str:
        return self.source or to_snake_case(self.name)

    @property
    def referenced_table(self) -> Optional[str]:
        return self.references.split(".", 1)[0] if self.references else None

    def fallback_value(self) -> Any:
        return self.fallback() if callable(self.fallback) else self.fallback

    def to_column(self) -> Column:
        args: List[Any] = [self.name, self.type_]
        if self.references:
            args.append(ForeignKey(self.references, ondelete=self.on_delete))
        return Column(
            *args,
            primary_key=self.primary_key,
            nullable=False if self.primary_key else self.nullable,
            unique=self.unique,
            server_default=self.server_default,
        )


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class TableDefinition:
    name: str
    columns: Tuple[ColumnDefinition, ...]
    indexes: Tuple[IndexDefinition, ...] = field(default_factory=tuple)
    source_table: Optional[str] = None

    @property
    def source_name(self) -> str:
        return self.source_table or self.name

    @property
    def primary_key(self) -> List[str]:
        return [column.name for column in self.columns if column.primary_key]

    @property
    def foreign_keys(self) -> List[ColumnDefinition]:
        return [column for column in self.columns if column.references]

    @property
    def parents(self) -> List[str]:
        seen: List[str] = []
        for column in self.foreign_keys:
            if column.referenced_table not in seen:
                seen.append(column.referenced_table)
        return seen

    def column(self, name: str) -> ColumnDefinition:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(f"{self.name} has no column {name!r}")


class TableDefinitionSet:
    """Ordered, dependency-checked collection of per-tenant tables."""

    def __init__(self, tables: Sequence[TableDefinition]):
        self._tables: Tuple[TableDefinition, ...] = tuple(tables)
        self._by_name: Dict[str, TableDefinition] = {}
        self._check_order()
        self.metadata = self._build_metadata()
        self._bound: Dict[str, MetaData] = {}
        self._lock = threading.Lock()

    def _check_order(self) -> None:
        for table in self._tables:
            if table.name in self._by_name:
                raise ValueError(f"table {table.name!r} declared twice")
            if not table.primary_key:
                raise ValueError(f"table {table.name!r} has no primary key")
            for column in table.foreign_keys:
                parent = column.referenced_table
                if parent != table.name and parent not in self._by_name:
                    raise ValueError(
                        f"table {table.name!r} references {parent!r} which is not declared before it"
                    )
            for index in table.indexes:
                for name in index.columns:
                    table.column(name)
            self._by_name[table.name] = table

    def _build_metadata(self) -> MetaData:
        metadata = MetaData()
        for definition in self._tables:
            table = Table(definition.name, metadata, *[c.to_column() for c in definition.columns])
            for index in definition.indexes:
                Index(index.name, *[table.c[name] for name in index.columns], unique=index.unique)
        return metadata

    def __iter__(self) -> Iterator[TableDefinition]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> List[str]:
        return [table.name for table in self._tables]

    def get(self, name: str) -> TableDefinition:
        return self._by_name[name]

    def index_names(self, name: str) -> List[str]:
        return [index.name for index in self._by_name[name].indexes]

    def bind_schema(self, schema_name: str) -> MetaData:
        """Copy of the canonical tables placed in ``schema_name`` (FKs retargeted too)."""
        with self._lock:
            bound = self._bound.get(schema_name)
            if bound is None:
                bound = MetaData()
                for definition in self._tables:
                    self.metadata.tables[definition.name].to_metadata(bound, schema=schema_name)
                self._bound[schema_name] = bound
            return bound

    def table(self, schema_name: str, name: str) -> Table:
        return self.bind_schema(schema_name).tables[f"{schema_name}.{name}"]

    def tables(self, schema_name: str) -> List[Table]:
        """Bound tables in dependency order."""
        return [self.table(schema_name, name) for name in self.names]