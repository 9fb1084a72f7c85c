"""
Embedding row writes.

Rows are keyed by (pool, source_collection, doc_id, chunk_index). Every
write for a document happens inside one transaction so readers never see a
mix of old and new chunk sets for a document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete
from sqlmodel import Session, col, func, select

from vectorpool.core.embedding import embedding_to_bytes
from vectorpool.db import DatabaseClient, managed_session, session_scope, utcnow
from vectorpool.embeddings.models import Embedding

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingRowData:
    chunk_index: int
    chunk_text: str
    embedding: Sequence[float]
    embedding_version: str
    extension_fields: dict[str, Any] = field(default_factory=dict)


class DimensionMismatchError(ValueError):
    def __init__(self, pool: str, expected: int, got: int):
        super().__init__(f"Embedding for pool '{pool}' has {got} dimensions, expected {expected}")


def _check_dims(pool: str, rows: Iterable[EmbeddingRowData], dims: Optional[int]) -> None:
    if dims is None:
        return
    for row in rows:
        if len(row.embedding) != dims:
            raise DimensionMismatchError(pool, dims, len(row.embedding))


def upsert_chunks(
    session: Session,
    *,
    pool: str,
    collection: str,
    doc_id: str,
    rows: Sequence[EmbeddingRowData],
) -> int:
    """Insert or overwrite the given chunk rows of one document."""
    if not rows:
        return 0

    indices = [row.chunk_index for row in rows]
    existing = {
        e.chunk_index: e
        for e in session.exec(
            select(Embedding).where(
                Embedding.pool == pool,
                Embedding.source_collection == collection,
                Embedding.doc_id == doc_id,
                col(Embedding.chunk_index).in_(indices),
            )
        ).all()
    }

    for row in rows:
        record = existing.get(row.chunk_index)
        if record is None:
            record = Embedding(
                pool=pool,
                source_collection=collection,
                doc_id=doc_id,
                chunk_index=row.chunk_index,
                embedding=b"",
                embedding_version=row.embedding_version,
            )
        record.chunk_text = row.chunk_text
        record.embedding_version = row.embedding_version
        record.embedding = embedding_to_bytes(row.embedding)
        record.extension_fields = dict(row.extension_fields) or None
        record.updated_at = utcnow()
        session.add(record)

    return len(rows)


def delete_chunks(
    session: Session,
    *,
    pool: str,
    collection: str,
    doc_id: str,
    indices: Optional[Iterable[int]] = None,
    keep_indices: Optional[Iterable[int]] = None,
) -> int:
    """
    Delete a document's rows.

    With `indices`, only those positions; with `keep_indices`, every position
    not listed; with neither, all of them.
    """
    stmt = delete(Embedding).where(
        Embedding.pool == pool,
        Embedding.source_collection == collection,
        Embedding.doc_id == doc_id,
    )
    if indices is not None:
        indices = list(indices)
        if not indices:
            return 0
        stmt = stmt.where(col(Embedding.chunk_index).in_(indices))
    if keep_indices is not None:
        stmt = stmt.where(col(Embedding.chunk_index).not_in(list(keep_indices)))
    result = session.exec(stmt)
    return result.rowcount or 0


class EmbeddingStore:
    """Reads and transactional writes of embedding rows for all pools."""

    def __init__(self, client: DatabaseClient):
        self.client = client

    def replace_document(
        self,
        *,
        pool: str,
        collection: str,
        doc_id: str,
        rows: Sequence[EmbeddingRowData],
        dims: Optional[int] = None,
    ) -> int:
        """Swap a document's whole chunk set for `rows` in one transaction."""
        _check_dims(pool, rows, dims)
        with managed_session(self.client) as session:
            removed = delete_chunks(session, pool=pool, collection=collection, doc_id=doc_id)
            session.flush()
            written = upsert_chunks(
                session, pool=pool, collection=collection, doc_id=doc_id, rows=rows
            )
        logger.debug(
            f"Replaced {collection}:{doc_id} in pool '{pool}' ({removed} removed, {written} written)"
        )
        return written

    def apply_batch_results(
        self,
        *,
        pool: str,
        collection: str,
        doc_id: str,
        rows: Sequence[EmbeddingRowData],
        failed_indices: Iterable[int],
        run_indices: Iterable[int],
        dims: Optional[int] = None,
    ) -> int:
        """
        Write one document's chunks from a completed provider batch.

        Succeeded chunks are upserted. Rows at this batch's failed positions
        and at positions the run no longer produces for the document are
        removed. A document with no succeeded chunk keeps its previous rows.
        """
        if not rows:
            return 0
        _check_dims(pool, rows, dims)
        with managed_session(self.client) as session:
            delete_chunks(
                session, pool=pool, collection=collection, doc_id=doc_id, indices=failed_indices
            )
            delete_chunks(
                session,
                pool=pool,
                collection=collection,
                doc_id=doc_id,
                keep_indices=run_indices,
            )
            session.flush()
            return upsert_chunks(
                session, pool=pool, collection=collection, doc_id=doc_id, rows=rows
            )

    def delete_document(self, *, pools: Iterable[str], collection: str, doc_id: str) -> int:
        removed = 0
        with managed_session(self.client) as session:
            for pool in pools:
                removed += delete_chunks(
                    session, pool=pool, collection=collection, doc_id=doc_id
                )
        return removed

    def list_rows(
        self,
        pool: str,
        *,
        collection: Optional[str] = None,
        doc_id: Optional[str] = None,
    ) -> list[Embedding]:
        stmt = select(Embedding).where(Embedding.pool == pool)
        if collection is not None:
            stmt = stmt.where(Embedding.source_collection == collection)
        if doc_id is not None:
            stmt = stmt.where(Embedding.doc_id == str(doc_id))
        stmt = stmt.order_by(Embedding.source_collection, Embedding.doc_id, Embedding.chunk_index)
        with session_scope(self.client) as session:
            return list(session.exec(stmt).all())

    def count(self, pool: str) -> int:
        with session_scope(self.client) as session:
            return session.exec(
                select(func.count()).select_from(Embedding).where(Embedding.pool == pool)
            ).one()

    def docs_with_version(
        self,
        session: Session,
        *,
        pool: str,
        collection: str,
        doc_ids: Sequence[str],
        embedding_version: str,
    ) -> set[str]:
        """Subset of `doc_ids` that has at least one row tagged `embedding_version`."""
        if not doc_ids:
            return set()
        stmt = (
            select(Embedding.doc_id)
            .where(
                Embedding.pool == pool,
                Embedding.source_collection == collection,
                Embedding.embedding_version == embedding_version,
                col(Embedding.doc_id).in_(list(doc_ids)),
            )
            .distinct()
        )
        return set(session.exec(stmt).all())
