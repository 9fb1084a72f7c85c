"""
Run, batch and input-metadata persistence.

State transitions that can race (run start, batch lease, batch terminal
status, run completion, retry claim) are compare-and-set UPDATEs: the
statement carries the expected current state in its WHERE clause and the
caller checks rowcount to learn whether it won.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Iterator, Optional, Sequence

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, or_, select

from vectorpool.db import DatabaseClient, managed_session, session_scope, utcnow
from vectorpool.workflows.bulk_embed.models import (
    ACTIVE_RUN_STATUSES,
    BatchStatus,
    BulkEmbeddingBatch,
    BulkEmbeddingInputMetadata,
    BulkEmbeddingRun,
    RunStatus,
)

logger = logging.getLogger(__name__)


class ActiveRunConflict(Exception):
    """Another run for the pool is queued or running."""

    def __init__(self, pool: str, active_run: Optional[BulkEmbeddingRun]):
        self.pool = pool
        self.active_run = active_run
        run_ref = f"run {active_run.id}" if active_run else "another run"
        super().__init__(f"Bulk embedding already in progress for pool '{pool}' ({run_ref})")


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def get_run(client: DatabaseClient, run_id: int) -> Optional[BulkEmbeddingRun]:
    with session_scope(client) as session:
        return session.get(BulkEmbeddingRun, run_id)


def find_active_run(
    session: Session, pool: str, *, exclude_run_id: Optional[int] = None
) -> Optional[BulkEmbeddingRun]:
    stmt = select(BulkEmbeddingRun).where(
        BulkEmbeddingRun.pool == pool,
        col(BulkEmbeddingRun.status).in_(ACTIVE_RUN_STATUSES),
    )
    if exclude_run_id is not None:
        stmt = stmt.where(BulkEmbeddingRun.id != exclude_run_id)
    return session.exec(stmt.order_by(BulkEmbeddingRun.id)).first()


def latest_succeeded_run(session: Session, pool: str) -> Optional[BulkEmbeddingRun]:
    stmt = (
        select(BulkEmbeddingRun)
        .where(
            BulkEmbeddingRun.pool == pool,
            BulkEmbeddingRun.status == RunStatus.SUCCEEDED,
        )
        .order_by(col(BulkEmbeddingRun.completed_at).desc(), col(BulkEmbeddingRun.id).desc())
    )
    return session.exec(stmt).first()


def list_runs(
    client: DatabaseClient, *, pool: Optional[str] = None, limit: int = 20
) -> list[BulkEmbeddingRun]:
    stmt = select(BulkEmbeddingRun)
    if pool:
        stmt = stmt.where(BulkEmbeddingRun.pool == pool)
    stmt = stmt.order_by(col(BulkEmbeddingRun.id).desc()).limit(limit)
    with session_scope(client) as session:
        return list(session.exec(stmt).all())


def create_run(client: DatabaseClient, *, pool: str, embedding_version: str) -> BulkEmbeddingRun:
    """
    Create a queued run, enforcing one active run per pool.

    Raises:
        ActiveRunConflict: if a queued/running run exists for the pool
    """
    with session_scope(client) as session:
        active = find_active_run(session, pool)
    if active is not None:
        raise ActiveRunConflict(pool, active)

    run = BulkEmbeddingRun(
        pool=pool,
        embedding_version=embedding_version,
        status=RunStatus.QUEUED,
        active_pool=pool,
    )
    try:
        with managed_session(client) as session:
            session.add(run)
            session.flush()
            session.refresh(run)
    except IntegrityError:
        # Lost the race to a concurrent start request
        with session_scope(client) as session:
            active = find_active_run(session, pool)
        raise ActiveRunConflict(pool, active)
    return run


def start_run(session: Session, run_id: int) -> bool:
    """queued -> running. False if the run was not queued."""
    result = session.exec(
        update(BulkEmbeddingRun)
        .where(BulkEmbeddingRun.id == run_id, BulkEmbeddingRun.status == RunStatus.QUEUED)
        .values(status=RunStatus.RUNNING, updated_at=utcnow())
    )
    return result.rowcount == 1


def finish_run(
    session: Session,
    run_id: int,
    *,
    status: RunStatus,
    from_statuses: Sequence[RunStatus] = ACTIVE_RUN_STATUSES,
    **values,
) -> bool:
    """Move an active run to a terminal status. Only one caller can win."""
    now = utcnow()
    result = session.exec(
        update(BulkEmbeddingRun)
        .where(
            BulkEmbeddingRun.id == run_id,
            col(BulkEmbeddingRun.status).in_(list(from_statuses)),
        )
        .values(status=status, active_pool=None, completed_at=now, updated_at=now, **values)
    )
    return result.rowcount == 1


def update_run(session: Session, run_id: int, **values) -> None:
    session.exec(
        update(BulkEmbeddingRun)
        .where(BulkEmbeddingRun.id == run_id)
        .values(updated_at=utcnow(), **values)
    )


def reopen_run(session: Session, run: BulkEmbeddingRun) -> bool:
    """
    Terminal -> running for a retry.

    Raises:
        IntegrityError: if another run for the pool became active meanwhile
    """
    result = session.exec(
        update(BulkEmbeddingRun)
        .where(
            BulkEmbeddingRun.id == run.id,
            col(BulkEmbeddingRun.status).not_in(list(ACTIVE_RUN_STATUSES)),
        )
        .values(
            status=RunStatus.RUNNING,
            active_pool=run.pool,
            completed_at=None,
            error=None,
            updated_at=utcnow(),
        )
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


def get_batch(client: DatabaseClient, batch_id: int) -> Optional[BulkEmbeddingBatch]:
    with session_scope(client) as session:
        return session.get(BulkEmbeddingBatch, batch_id)


def list_batches(
    session: Session, run_id: int, *, include_retried: bool = True
) -> list[BulkEmbeddingBatch]:
    stmt = select(BulkEmbeddingBatch).where(BulkEmbeddingBatch.run_id == run_id)
    if not include_retried:
        stmt = stmt.where(BulkEmbeddingBatch.status != BatchStatus.RETRIED)
    return list(session.exec(stmt.order_by(BulkEmbeddingBatch.batch_index)).all())


def next_batch_index(session: Session, run_id: int) -> int:
    current = session.exec(
        select(func.max(BulkEmbeddingBatch.batch_index)).where(BulkEmbeddingBatch.run_id == run_id)
    ).one()
    return 0 if current is None else current + 1


def create_batch(
    session: Session,
    *,
    run_id: int,
    provider_batch_id: str,
    input_file_ref: Optional[str],
    input_count: int,
) -> BulkEmbeddingBatch:
    batch = BulkEmbeddingBatch(
        run_id=run_id,
        batch_index=next_batch_index(session, run_id),
        provider_batch_id=provider_batch_id,
        input_file_ref=input_file_ref,
        status=BatchStatus.QUEUED,
        input_count=input_count,
        submitted_at=utcnow(),
    )
    session.add(batch)
    session.flush()
    session.refresh(batch)
    return batch


def claim_batch_lease(client: DatabaseClient, batch_id: int, *, lease_seconds: float) -> Optional[str]:
    """Take the poll lease on a non-terminal batch. Returns the token, or None if held."""
    token = uuid.uuid4().hex
    now = utcnow()
    with managed_session(client) as session:
        result = session.exec(
            update(BulkEmbeddingBatch)
            .where(
                BulkEmbeddingBatch.id == batch_id,
                col(BulkEmbeddingBatch.status).in_([BatchStatus.QUEUED, BatchStatus.RUNNING]),
                or_(
                    col(BulkEmbeddingBatch.lease_token).is_(None),
                    col(BulkEmbeddingBatch.lease_expires_at) < now,
                ),
            )
            .values(
                lease_token=token,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
            )
        )
    return token if result.rowcount == 1 else None


def release_batch_lease(
    client: DatabaseClient, batch_id: int, token: str, *, status: Optional[BatchStatus] = None
) -> None:
    values: dict = {"lease_token": None, "lease_expires_at": None, "updated_at": utcnow()}
    if status is not None:
        values["status"] = status
    with managed_session(client) as session:
        session.exec(
            update(BulkEmbeddingBatch)
            .where(BulkEmbeddingBatch.id == batch_id, BulkEmbeddingBatch.lease_token == token)
            .values(**values)
        )


def complete_batch(
    session: Session,
    batch_id: int,
    *,
    token: Optional[str],
    status: BatchStatus,
    succeeded_count: int,
    failed_count: int,
    error: Optional[str] = None,
    failed_chunk_data: Optional[list] = None,
) -> bool:
    """Non-terminal -> terminal, guarded by the caller's lease. Only one caller can win."""
    now = utcnow()
    stmt = update(BulkEmbeddingBatch).where(
        BulkEmbeddingBatch.id == batch_id,
        col(BulkEmbeddingBatch.status).in_([BatchStatus.QUEUED, BatchStatus.RUNNING]),
    )
    if token is not None:
        stmt = stmt.where(BulkEmbeddingBatch.lease_token == token)
    result = session.exec(
        stmt.values(
            status=status,
            succeeded_count=succeeded_count,
            failed_count=failed_count,
            error=error,
            failed_chunk_data=failed_chunk_data or None,
            completed_at=now,
            updated_at=now,
            lease_token=None,
            lease_expires_at=None,
        )
    )
    return result.rowcount == 1


def cancel_open_batches(session: Session, run_id: int, *, error: str) -> list[str]:
    """Cancel a run's non-terminal batches. Returns their provider batch ids."""
    open_batches = session.exec(
        select(BulkEmbeddingBatch).where(
            BulkEmbeddingBatch.run_id == run_id,
            col(BulkEmbeddingBatch.status).in_([BatchStatus.QUEUED, BatchStatus.RUNNING]),
        )
    ).all()
    now = utcnow()
    cancelled = []
    for batch in open_batches:
        result = session.exec(
            update(BulkEmbeddingBatch)
            .where(
                BulkEmbeddingBatch.id == batch.id,
                col(BulkEmbeddingBatch.status).in_([BatchStatus.QUEUED, BatchStatus.RUNNING]),
            )
            .values(
                status=BatchStatus.CANCELED,
                failed_count=batch.input_count,
                error=error,
                completed_at=now,
                updated_at=now,
                lease_token=None,
                lease_expires_at=None,
            )
        )
        if result.rowcount == 1:
            cancelled.append(batch.provider_batch_id)
    return cancelled


def claim_batch_for_retry(session: Session, batch_id: int) -> bool:
    """failed -> retried. Only one concurrent retry can win."""
    result = session.exec(
        update(BulkEmbeddingBatch)
        .where(BulkEmbeddingBatch.id == batch_id, BulkEmbeddingBatch.status == BatchStatus.FAILED)
        .values(status=BatchStatus.RETRIED, updated_at=utcnow())
    )
    return result.rowcount == 1


def revert_retry_claim(client: DatabaseClient, batch_id: int) -> None:
    with managed_session(client) as session:
        session.exec(
            update(BulkEmbeddingBatch)
            .where(
                BulkEmbeddingBatch.id == batch_id,
                BulkEmbeddingBatch.status == BatchStatus.RETRIED,
                col(BulkEmbeddingBatch.retried_by_batch_id).is_(None),
            )
            .values(status=BatchStatus.FAILED, updated_at=utcnow())
        )


# ---------------------------------------------------------------------------
# Input metadata
# ---------------------------------------------------------------------------


def metadata_for_inputs(
    session: Session, run_id: int, input_ids: Sequence[str]
) -> dict[str, BulkEmbeddingInputMetadata]:
    if not input_ids:
        return {}
    stmt = select(BulkEmbeddingInputMetadata).where(
        BulkEmbeddingInputMetadata.run_id == run_id,
        col(BulkEmbeddingInputMetadata.input_id).in_(list(input_ids)),
    )
    return {m.input_id: m for m in session.exec(stmt).all()}


def iter_batch_metadata(
    client: DatabaseClient, batch_id: int, *, page_size: int = 500
) -> Iterator[BulkEmbeddingInputMetadata]:
    """Yield a batch's metadata rows in submission order, one page at a time."""
    after_id = 0
    while True:
        stmt = (
            select(BulkEmbeddingInputMetadata)
            .where(
                BulkEmbeddingInputMetadata.batch_id == batch_id,
                BulkEmbeddingInputMetadata.id > after_id,
            )
            .order_by(BulkEmbeddingInputMetadata.id)
            .limit(page_size)
        )
        with session_scope(client) as session:
            page = list(session.exec(stmt).all())
        if not page:
            return
        yield from page
        if len(page) < page_size:
            return
        after_id = page[-1].id


def count_batch_metadata(session: Session, batch_id: int) -> int:
    return session.exec(
        select(func.count())
        .select_from(BulkEmbeddingInputMetadata)
        .where(BulkEmbeddingInputMetadata.batch_id == batch_id)
    ).one()


def batch_doc_indices(session: Session, batch_id: int) -> dict[tuple[str, str], int]:
    """(collection, doc_id) -> number of this batch's chunks for that document."""
    stmt = (
        select(
            BulkEmbeddingInputMetadata.source_collection,
            BulkEmbeddingInputMetadata.doc_id,
            func.count(),
        )
        .where(BulkEmbeddingInputMetadata.batch_id == batch_id)
        .group_by(BulkEmbeddingInputMetadata.source_collection, BulkEmbeddingInputMetadata.doc_id)
    )
    return {(c, d): n for c, d, n in session.exec(stmt).all()}


def run_doc_indices(session: Session, run_id: int, collection: str, doc_id: str) -> set[int]:
    """Every chunk index the run produced for a document."""
    stmt = select(BulkEmbeddingInputMetadata.chunk_index).where(
        BulkEmbeddingInputMetadata.run_id == run_id,
        BulkEmbeddingInputMetadata.source_collection == collection,
        BulkEmbeddingInputMetadata.doc_id == doc_id,
    )
    return set(session.exec(stmt).all())


def document_metadata(
    session: Session, run_id: int, collection: str, doc_id: str
) -> list[BulkEmbeddingInputMetadata]:
    stmt = (
        select(BulkEmbeddingInputMetadata)
        .where(
            BulkEmbeddingInputMetadata.run_id == run_id,
            BulkEmbeddingInputMetadata.source_collection == collection,
            BulkEmbeddingInputMetadata.doc_id == doc_id,
        )
        .order_by(BulkEmbeddingInputMetadata.chunk_index)
    )
    return list(session.exec(stmt).all())


def stage_embeddings(session: Session, run_id: int, embeddings: dict[str, list[float]]) -> None:
    """Park embeddings on their metadata rows until the whole document can be written."""
    for input_id, embedding in embeddings.items():
        session.exec(
            update(BulkEmbeddingInputMetadata)
            .where(
                BulkEmbeddingInputMetadata.run_id == run_id,
                BulkEmbeddingInputMetadata.input_id == input_id,
            )
            .values(staged_embedding=embedding)
        )


def clear_staged_embeddings(session: Session, run_id: int, input_ids: Sequence[str]) -> int:
    if not input_ids:
        return 0
    result = session.exec(
        update(BulkEmbeddingInputMetadata)
        .where(
            BulkEmbeddingInputMetadata.run_id == run_id,
            col(BulkEmbeddingInputMetadata.input_id).in_(list(input_ids)),
        )
        .values(staged_embedding=None)
    )
    return result.rowcount or 0


def staged_documents(session: Session, run_id: int) -> list[tuple[str, str]]:
    """(collection, doc_id) of every document with staged embeddings in the run."""
    stmt = (
        select(BulkEmbeddingInputMetadata.source_collection, BulkEmbeddingInputMetadata.doc_id)
        .where(
            BulkEmbeddingInputMetadata.run_id == run_id,
            col(BulkEmbeddingInputMetadata.staged_embedding).is_not(None),
        )
        .distinct()
        .order_by(BulkEmbeddingInputMetadata.source_collection, BulkEmbeddingInputMetadata.doc_id)
    )
    return [(c, d) for c, d in session.exec(stmt).all()]


def add_metadata(session: Session, rows: Sequence[BulkEmbeddingInputMetadata]) -> None:
    session.add_all(list(rows))


def repoint_metadata(session: Session, *, from_batch_id: int, to_batch_id: int, input_ids: Sequence[str]) -> int:
    result = session.exec(
        update(BulkEmbeddingInputMetadata)
        .where(
            BulkEmbeddingInputMetadata.batch_id == from_batch_id,
            col(BulkEmbeddingInputMetadata.input_id).in_(list(input_ids)),
        )
        .values(batch_id=to_batch_id)
    )
    return result.rowcount or 0


def delete_run_metadata(session: Session, run_id: int) -> int:
    result = session.exec(
        delete(BulkEmbeddingInputMetadata).where(BulkEmbeddingInputMetadata.run_id == run_id)
    )
    return result.rowcount or 0


def delete_document_metadata(session: Session, collection: str, doc_id: str) -> int:
    """Drop a deleted document's pending input metadata."""
    result = session.exec(
        delete(BulkEmbeddingInputMetadata).where(
            BulkEmbeddingInputMetadata.source_collection == collection,
            BulkEmbeddingInputMetadata.doc_id == doc_id,
        )
    )
    return result.rowcount or 0


def link_retry(session: Session, batch_id: int, *, replacement_id: int) -> None:
    session.exec(
        update(BulkEmbeddingBatch)
        .where(BulkEmbeddingBatch.id == batch_id)
        .values(retried_by_batch_id=replacement_id, updated_at=utcnow())
    )


def abandon_replacements(
    session: Session, *, original_batch_id: int, replacement_ids: Sequence[int], error: str
) -> None:
    """Hand metadata back to the original batch and retire the replacements."""
    if not replacement_ids:
        return
    session.exec(
        update(BulkEmbeddingInputMetadata)
        .where(col(BulkEmbeddingInputMetadata.batch_id).in_(list(replacement_ids)))
        .values(batch_id=original_batch_id)
    )
    # RETRIED keeps them out of run aggregation
    session.exec(
        update(BulkEmbeddingBatch)
        .where(col(BulkEmbeddingBatch.id).in_(list(replacement_ids)))
        .values(status=BatchStatus.RETRIED, error=error, completed_at=utcnow(), updated_at=utcnow())
    )
