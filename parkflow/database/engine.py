"""
ParkFlow - Database Engine
Engine creation and transactional session scopes.
"""

from contextlib import contextmanager
from typing import Iterator
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from parkflow.database.tables import Base
from parkflow.exceptions import Conflict

# Configure logging
logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Relational store used by every service.
    Each unit of work runs inside `session_scope()`, which commits on success
    and rolls back on any error.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {"echo": echo}

        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **engine_kwargs)

        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_all(self):
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Database schema ready")

    def drop_all(self):
        """Drop all tables."""
        Base.metadata.drop_all(self.engine)

    def dispose(self):
        """Release pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Raises:
            Conflict: If a uniqueness or integrity constraint is violated
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"Integrity error: {e.orig}")
            raise Conflict("Request conflicts with existing data") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
