"""
Session helpers.

Every helper takes the DatabaseClient explicitly:

    client = SQLiteClient(db_path)
    client.init_database()

    with managed_session(client) as session:
        session.add(run)
    # committed here, rolled back if the block raised
"""

from contextlib import contextmanager
from typing import Iterator, Union

from sqlmodel import Session

from vectorpool.db.base import DatabaseClient

__all__ = [
    "managed_session",
    "session_scope",
    "register_models",
]


def register_models() -> None:
    """Import every table module so SQLModel.metadata knows about them."""
    from vectorpool.documents import models as _documents  # noqa: F401
    from vectorpool.embeddings import models as _embeddings  # noqa: F401
    from vectorpool.workflows.bulk_embed import models as _bulk_embed  # noqa: F401


@contextmanager
def managed_session(source: Union[DatabaseClient, Session]) -> Iterator[Session]:
    """
    Transactional session scope.

    Given a client, opens a session, commits on success, rolls back on error
    and closes it. Given an existing session, yields it untouched so the caller
    keeps control of the transaction.
    """
    if isinstance(source, Session):
        yield source
        return

    session = source.get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(client: DatabaseClient) -> Iterator[Session]:
    """Read-only session scope: no commit, always closed."""
    session = client.get_session()
    try:
        yield session
    finally:
        session.close()
