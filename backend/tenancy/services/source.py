"""
Read access to the legacy shared tables (rows of every tenant, keyed by tenant_id).
"""
import threading
from typing import Dict, Optional

from sqlalchemy import MetaData, Table, func, inspect, select
from sqlalchemy.engine import Engine

from tenancy.core.config import settings
from tenancy.core.logging import get_logger

logger = get_logger(__name__)

TENANT_COLUMN = "tenant_id"


class LegacySource:
    """Reflected view of the shared tables.

    Tables are reflected on first use, so columns the legacy database never had
    simply do not show up (instead of failing a SELECT).
    """

    def __init__(self, engine: Engine, schema: Optional[str] = None):
        self.engine = engine
        self.schema = schema if schema is not None else settings.SHARED_SCHEMA
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._lock = threading.Lock()

    def table(self, name: str) -> Optional[Table]:
        """The reflected shared table, or None when it does not exist."""
        with self._lock:
            table = self._tables.get(name)
            if table is not None:
                return table

            with self.engine.connect() as conn:
                if not inspect(conn).has_table(name, schema=self.schema):
                    return None
                table = Table(name, self._metadata, schema=self.schema, autoload_with=conn)

            self._tables[name] = table
            logger.debug("Reflected shared table %s columns=%s", name, list(table.c.keys()))
            return table

    def is_tenant_scoped(self, table: Table) -> bool:
        return TENANT_COLUMN in table.c

    def count(self, name: str, tenant_id: str) -> Optional[int]:
        """Rows of ``tenant_id`` in the shared table, or None when the table is unusable."""
        table = self.table(name)
        if table is None or not self.is_tenant_scoped(table):
            return None
        stmt = select(func.count()).select_from(table).where(table.c[TENANT_COLUMN] == tenant_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one()
