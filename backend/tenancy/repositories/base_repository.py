"""
Base repository with common read operations.

Repositories hold a session factory rather than a session: every call runs in
its own short unit of work, which keeps them safe to share across the
orchestrator's worker threads and the resolver's refresh thread.
"""
from contextlib import contextmanager
from typing import Generic, Iterator, Optional, Type, TypeVar

from sqlalchemy.orm import Session, sessionmaker

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """Base repository with common database operations"""

    def __init__(self, model: Type[ModelType], session_factory: sessionmaker):
        self.model = model
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error"""
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, id: str) -> Optional[ModelType]:
        """Get a single record by primary key"""
        with self.session() as db:
            return db.get(self.model, id)
