"""Database module - clients, sessions and shared mixins."""

from vectorpool.db.base import DatabaseClient, get_database_client
from vectorpool.db.database import managed_session, register_models, session_scope
from vectorpool.db.models import TimestampMixin, utcnow

__all__ = [
    "DatabaseClient",
    "get_database_client",
    "managed_session",
    "register_models",
    "session_scope",
    "TimestampMixin",
    "utcnow",
]
