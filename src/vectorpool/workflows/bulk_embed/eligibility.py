"""
Which source documents a bulk run must (re-)embed.

The baseline is the pool's latest succeeded run. Without one, or when its
embedding version differs from the pool's current version, every document
that passes the collection's `should_embed` predicate is selected. Otherwise
a document is selected when it has no rows tagged with the current version
or was updated after the baseline run completed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Optional

from vectorpool.db import session_scope
from vectorpool.documents import DocumentStore, SourceDocument
from vectorpool.embeddings import EmbeddingStore
from vectorpool.pools import CollectionConfig, KnowledgePool
from vectorpool.workflows.bulk_embed.models import BulkEmbeddingRun

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EligibleDocument:
    collection: str
    doc_id: str
    doc: dict[str, Any]


@dataclass(slots=True)
class Baseline:
    include_all: bool
    completed_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: Optional[BulkEmbeddingRun], embedding_version: str) -> "Baseline":
        if run is None or run.embedding_version != embedding_version:
            return cls(include_all=True)
        return cls(include_all=False, completed_at=run.completed_at)


def _is_stale(doc: SourceDocument, baseline: Baseline) -> bool:
    if baseline.completed_at is None:
        return True
    return doc.updated_at > baseline.completed_at


def iter_eligible_documents(
    pool: KnowledgePool,
    *,
    documents: DocumentStore,
    embeddings: EmbeddingStore,
    baseline: Baseline,
    page_size: int = 50,
) -> Iterator[EligibleDocument]:
    """Page through every collection of `pool`, yielding documents to embed."""
    for collection, collection_config in pool.collections.items():
        yield from _iter_collection(
            pool,
            collection,
            collection_config,
            documents=documents,
            embeddings=embeddings,
            baseline=baseline,
            page_size=page_size,
        )


def _iter_collection(
    pool: KnowledgePool,
    collection: str,
    collection_config: CollectionConfig,
    *,
    documents: DocumentStore,
    embeddings: EmbeddingStore,
    baseline: Baseline,
    page_size: int,
) -> Iterator[EligibleDocument]:
    after: Optional[str] = None
    selected = skipped = 0
    while True:
        with session_scope(documents.client) as session:
            page = documents.fetch_page(session, collection, after=after, limit=page_size)
            if not page:
                break
            current = set()
            if not baseline.include_all:
                current = embeddings.docs_with_version(
                    session,
                    pool=pool.name,
                    collection=collection,
                    doc_ids=[d.doc_id for d in page],
                    embedding_version=pool.embedding_version,
                )

        for record in page:
            doc = record.as_document()
            if not collection_config.accepts(doc):
                skipped += 1
                continue
            if baseline.include_all or record.doc_id not in current or _is_stale(record, baseline):
                selected += 1
                yield EligibleDocument(collection=collection, doc_id=record.doc_id, doc=doc)

        if len(page) < page_size:
            break
        after = page[-1].doc_id

    logger.debug(
        f"Pool '{pool.name}' collection '{collection}': {selected} eligible, "
        f"{skipped} skipped by should_embed"
    )
