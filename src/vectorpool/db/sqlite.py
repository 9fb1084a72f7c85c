"""SQLite database client for local development and tests."""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from vectorpool.db.base import DatabaseClient

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    """Configure SQLite for concurrent readers and a single writer."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


class SQLiteClient(DatabaseClient):
    """SQLite database client."""

    def __init__(self, db_path: Optional[Path] = None):
        """
        Args:
            db_path: Optional explicit path. Defaults to .vectorpool/vectorpool.sqlite in cwd
        """
        self._db_path = db_path
        self._engine: Optional[Engine] = None

    def get_database_path(self) -> Path:
        """Get the path to the SQLite database file."""
        if self._db_path:
            return self._db_path
        return Path.cwd() / ".vectorpool" / "vectorpool.sqlite"

    def get_database_url(self) -> str:
        return f"sqlite:///{self.get_database_path()}"

    def get_mode_name(self) -> str:
        return "sqlite"

    def _get_connect_args(self) -> dict:
        return {
            "check_same_thread": False,
            "timeout": 30.0,
        }

    def get_engine(self) -> Engine:
        """Get or lazily create the engine."""
        if self._engine is None:
            self.get_database_path().parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                self.get_database_url(),
                echo=False,
                connect_args=self._get_connect_args(),
                pool_pre_ping=True,
            )
            event.listen(self._engine, "connect", _set_sqlite_pragmas)
        return self._engine

    def init_database(self) -> None:
        """Create the database file and all tables (idempotent)."""
        from vectorpool.db.database import register_models

        register_models()
        db_path = self.get_database_path()
        if db_path.exists():
            logger.info(f"Database already exists at: {db_path}")
        else:
            logger.info(f"Creating database at: {db_path}")

        SQLModel.metadata.create_all(self.get_engine())
        logger.debug(f"Tables ready: {sorted(SQLModel.metadata.tables.keys())}")

    def get_session(self) -> Session:
        return Session(self.get_engine(), expire_on_commit=False)

    def check_database_exists(self) -> bool:
        return self.get_database_path().exists()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
