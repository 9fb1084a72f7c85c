"""
Base database client interface.

Components never reach for a process-wide database handle: a DatabaseClient
is created once per plugin initialisation and passed to whatever needs it.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlmodel import Session

from vectorpool.config.base import VectorpoolConfig


class DatabaseClient(ABC):
    """
    Abstract base class for database clients.

    Implemented by:
    - SQLiteClient: local .vectorpool/vectorpool.sqlite database
    - PostgreSQLClient: remote PostgreSQL database (DATABASE_URL)
    """

    @abstractmethod
    def get_database_url(self) -> str:
        """Get the database connection URL."""
        pass

    @abstractmethod
    def init_database(self) -> None:
        """Create every table the plugin owns."""
        pass

    @abstractmethod
    def get_session(self) -> Session:
        """Get a database session."""
        pass

    @abstractmethod
    def check_database_exists(self) -> bool:
        """Check if the database exists and is accessible."""
        pass

    @abstractmethod
    def get_mode_name(self) -> str:
        """Get the name of this database mode (e.g., 'sqlite', 'postgresql')."""
        pass

    def dispose(self) -> None:
        """Release pooled connections."""
        return None


def get_database_client(config: Optional[VectorpoolConfig] = None) -> DatabaseClient:
    """
    Build the database client described by `config`.

    - DATABASE_URL set: PostgreSQLClient
    - Otherwise: SQLiteClient at PATH_DB
    """
    if config is None:
        from vectorpool.config import get_config_or_default

        config = get_config_or_default()

    if config.DATABASE_URL and config.DATABASE_URL.startswith(("postgres://", "postgresql")):
        from vectorpool.db.postgresql import PostgreSQLClient

        return PostgreSQLClient(database_url=config.DATABASE_URL)

    from vectorpool.db.sqlite import SQLiteClient

    return SQLiteClient(db_path=config.get_absolute_db_path())
