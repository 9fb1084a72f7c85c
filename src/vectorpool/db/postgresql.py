"""PostgreSQL database client."""

import logging
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from vectorpool.db.base import DatabaseClient

logger = logging.getLogger(__name__)


class PostgreSQLClient(DatabaseClient):
    """PostgreSQL client configured from a DATABASE_URL."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine: Optional[Engine] = None

    def get_database_url(self) -> str:
        return self.database_url

    def get_mode_name(self) -> str:
        return "postgresql"

    def _get_sync_url(self) -> str:
        """SQLAlchemy only understands the postgresql:// scheme."""
        if self.database_url.startswith("postgres://"):
            return "postgresql://" + self.database_url[len("postgres://") :]
        return self.database_url

    def get_engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(
                self._get_sync_url(),
                echo=False,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
            )
        return self._engine

    def init_database(self) -> None:
        from vectorpool.db.database import register_models

        register_models()
        logger.info("Creating vectorpool tables in PostgreSQL")
        SQLModel.metadata.create_all(self.get_engine())

    def get_session(self) -> Session:
        return Session(self.get_engine(), expire_on_commit=False)

    def check_database_exists(self) -> bool:
        try:
            return inspect(self.get_engine()).has_table("bulk_embedding_runs")
        except OperationalError as e:
            logger.warning(f"PostgreSQL not reachable: {e}")
            return False

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
