"""
Realtime (single-document) embedding.

Used when a document changes: its chunks are embedded right away with the
pool's `embed_docs` and swapped in as the document's complete row set.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from vectorpool.core.errors import VectorpoolError
from vectorpool.db import DatabaseClient, managed_session
from vectorpool.embeddings import EmbeddingRowData, EmbeddingStore
from vectorpool.pools import KnowledgePool, validate_chunk_data
from vectorpool.workflows.bulk_embed import store as bulk_store

logger = logging.getLogger(__name__)


class RealtimeNotConfiguredError(VectorpoolError):
    def __init__(self, pool: str):
        self.pool = pool
        super().__init__(f"Knowledge pool '{pool}' has no embed_docs function")


def pools_for_collection(pools: Iterable[KnowledgePool], collection: str) -> list[KnowledgePool]:
    return [pool for pool in pools if collection in pool.collections]


def vectorize_document(
    pool: KnowledgePool,
    collection: str,
    doc: Mapping[str, Any],
    *,
    embeddings: EmbeddingStore,
) -> int:
    """
    Embed one document into `pool`, replacing its previous rows.

    Returns the number of rows written (0 when `should_embed` rejects it).

    Raises:
        ChunkValidationError: chunker output malformed
        RealtimeNotConfiguredError: pool has no embed_docs
    """
    collection_config = pool.get_collection(collection)
    if collection_config is None:
        raise VectorpoolError(f"Collection '{collection}' is not part of pool '{pool.name}'")
    if pool.embed_docs is None:
        raise RealtimeNotConfiguredError(pool.name)

    doc_id = str(doc["id"])
    if not collection_config.accepts(doc):
        logger.debug(f"{collection}:{doc_id} skipped for pool '{pool.name}' by should_embed")
        return 0

    entries = validate_chunk_data(collection, doc_id, collection_config.to_knowledge_pool(doc))
    vectors = pool.embed_docs([entry.text for entry in entries]) if entries else []
    if len(vectors) != len(entries):
        raise VectorpoolError(
            f"embed_docs returned {len(vectors)} vectors for {len(entries)} chunks "
            f"({collection}:{doc_id})"
        )

    rows = [
        EmbeddingRowData(
            chunk_index=index,
            chunk_text=entry.text,
            embedding=vector,
            embedding_version=pool.embedding_version,
            extension_fields=entry.extension_fields,
        )
        for index, (entry, vector) in enumerate(zip(entries, vectors))
    ]
    written = embeddings.replace_document(
        pool=pool.name, collection=collection, doc_id=doc_id, rows=rows, dims=pool.dims
    )
    logger.info(f"Vectorized {collection}:{doc_id} into pool '{pool.name}' ({written} chunks)")
    return written


def delete_document_embeddings(
    client: DatabaseClient,
    pools: Iterable[KnowledgePool],
    collection: str,
    doc_id: str,
    *,
    embeddings: EmbeddingStore,
) -> dict[str, int]:
    """Remove a deleted document's rows from every pool and its pending bulk metadata."""
    pool_names = [pool.name for pool in pools_for_collection(pools, collection)]
    removed_rows = embeddings.delete_document(
        pools=pool_names, collection=collection, doc_id=str(doc_id)
    )
    with managed_session(client) as session:
        removed_metadata = bulk_store.delete_document_metadata(session, collection, str(doc_id))
    logger.info(
        f"Deleted {collection}:{doc_id} from {len(pool_names)} pool(s) "
        f"({removed_rows} rows, {removed_metadata} pending inputs)"
    )
    return {"embeddings": removed_rows, "input_metadata": removed_metadata}
