"""Database connection and session management.

DatabaseManager owns the SQLAlchemy engine and hands out sessions through a
context manager that commits on success and rolls back on error. PostgreSQL
is the production target; SQLite (including in-memory) is supported for
local runs and tests.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_env
from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///reviewloom.db"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Engine + session factory for one database URL."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._is_sqlite = database_url.startswith("sqlite")

        engine_kwargs = {"echo": echo}
        if self._is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # Single shared connection so every session sees the same database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_pre_ping=True,
                pool_recycle=3600,
            )

        self.engine = create_engine(database_url, **engine_kwargs)
        if self._is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(f"DatabaseManager initialized ({self.engine.dialect.name})")

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Yield a session; commit on success, roll back and re-raise on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables ensured")

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def check_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def get_database_manager(database_url: Optional[str] = None) -> DatabaseManager:
    """Build a DatabaseManager from an explicit URL or DATABASE_URL."""
    url = database_url or get_env("DATABASE_URL", DEFAULT_DATABASE_URL)
    return DatabaseManager(url)


def wait_for_db(db_manager: DatabaseManager, retries: int = 10, delay: float = 2.0) -> bool:
    """Block until the database answers, retrying with a fixed delay."""
    for attempt in range(1, retries + 1):
        if db_manager.check_connection():
            logger.info("Database is available")
            return True
        logger.warning(f"Database not ready (attempt {attempt}/{retries}), retrying in {delay}s")
        time.sleep(delay)
    logger.error("Database did not become available")
    return False
