"""
Database engine and session management.

One physical database and one shared connection pool serve every tenant
schema; pool size bounds query concurrency across migration and live traffic.
"""
import glob
import os
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tenancy.core.config import settings
from tenancy.core.logging import get_logger

logger = get_logger(__name__)

# Create base class for global (non tenant-scoped) models
Base = declarative_base()


def create_db_engine(database_url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    """Create the process-wide engine.

    SQLite is supported for local runs and tests only: it gets a single static
    connection (schemas are emulated with ATTACH, which is per-connection) and
    foreign-key enforcement.
    """
    url = make_url(database_url or settings.DATABASE_URL)
    echo = settings.DEBUG if echo is None else echo

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _configure_sqlite_connection(url))
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        )

    logger.info("Database engine created url=%s", url.render_as_string(hide_password=True))
    return engine


def session_factory(engine: Engine) -> sessionmaker:
    """Session factory for registry access; objects stay usable after commit."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def sqlite_schema_path(url: URL, schema_name: str) -> str:
    """File backing an emulated schema: ``app.db`` -> ``app.<schema>.db``; in-memory stays in memory."""
    database = url.database or ""
    if database in ("", ":memory:") or database.startswith("file:"):
        return ":memory:"
    root, ext = os.path.splitext(database)
    return f"{root}.{schema_name}{ext or '.db'}"


def _configure_sqlite_connection(url: URL):
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            # Re-attach schemas created by earlier runs against the same file
            database = url.database or ""
            if database and database != ":memory:" and not database.startswith("file:"):
                root, ext = os.path.splitext(database)
                prefix = os.path.basename(root) + "."
                for path in sorted(glob.glob(f"{glob.escape(root)}.*{ext or '.db'}")):
                    schema = os.path.basename(path)[len(prefix):-len(ext or ".db")]
                    if schema and schema.replace("_", "").isalnum():
                        cursor.execute(f'ATTACH DATABASE ? AS "{schema}"', (path,))
        finally:
            cursor.close()

    return _on_connect
