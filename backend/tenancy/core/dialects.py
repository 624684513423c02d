"""
Dialect seam: identifier quoting, schema DDL, upserts and search_path.

PostgreSQL is the production target. SQLite (tests, local runs) emulates
schemas with attached databases.
"""
from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy import Table, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.schema import CreateSchema
from sqlalchemy.sql.dml import Insert

from tenancy.core.database import sqlite_schema_path
from tenancy.core.errors import InvalidIdentifier

# PostgreSQL NAMEDATALEN - 1
MAX_IDENTIFIER_BYTES = 63


def backend_name(conn: Connection) -> str:
    return conn.dialect.name


def quote_identifier(dialect: Dialect, identifier: str) -> str:
    """Always-quoted identifier for interpolation into raw DDL/SQL."""
    if not identifier or not identifier.strip():
        raise InvalidIdentifier(identifier, "empty identifier")
    if "\x00" in identifier:
        raise InvalidIdentifier(identifier, "contains NUL byte")
    if len(identifier.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise InvalidIdentifier(identifier, f"longer than {MAX_IDENTIFIER_BYTES} bytes")
    return dialect.identifier_preparer.quote_identifier(identifier)


def qualified_name(dialect: Dialect, schema: str, table: str) -> str:
    return f"{quote_identifier(dialect, schema)}.{quote_identifier(dialect, table)}"


def schema_exists(conn: Connection, schema_name: str) -> bool:
    return schema_name in inspect(conn).get_schema_names()


def create_schema_if_not_exists(conn: Connection, schema_name: str) -> bool:
    """Create the schema when absent. Returns True when it was created."""
    if schema_exists(conn, schema_name):
        return False

    if backend_name(conn) == "sqlite":
        path = sqlite_schema_path(conn.engine.url, schema_name)
        conn.exec_driver_sql(
            f"ATTACH DATABASE ? AS {quote_identifier(conn.dialect, schema_name)}",
            (path,),
        )
    else:
        conn.execute(CreateSchema(schema_name, if_not_exists=True))
    return True


def upsert_statement(
    conn: Connection,
    table: Table,
    key_columns: Sequence[str],
    update_columns: Iterable[str],
) -> Insert:
    """INSERT ... ON CONFLICT (key) DO UPDATE SET every non-key column."""
    name = backend_name(conn)
    if name == "postgresql":
        stmt = postgresql.insert(table)
    elif name == "sqlite":
        stmt = sqlite.insert(table)
    else:
        raise NotImplementedError(f"upsert is not supported for dialect {name!r}")

    update_columns = [column for column in update_columns if column not in key_columns]
    if not update_columns:
        return stmt.on_conflict_do_nothing(index_elements=list(key_columns))
    return stmt.on_conflict_do_update(
        index_elements=list(key_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )


def set_search_path(conn: Connection, schema_name: str) -> None:
    """Bind unqualified names on this connection to the tenant schema (PostgreSQL only)."""
    if backend_name(conn) != "postgresql":
        return
    path = f"{quote_identifier(conn.dialect, schema_name)}, public"
    conn.execute(text("SELECT set_config('search_path', :path, false)"), {"path": path})


def reset_search_path(conn: Connection) -> None:
    if backend_name(conn) != "postgresql":
        return
    conn.exec_driver_sql("RESET search_path")
