"""
Applying a completed batch's output stream.

Outputs arrive one at a time. Each document's embeddings are held back only
until all of that document's chunks in the batch have been seen, then written
in a single transaction. A crash mid-stream leaves earlier documents written;
replaying the batch upserts the same rows again.

A document whose chunks were split across several batches is not written by
any single batch. Its embeddings are staged on the input metadata rows and
the whole document is written by apply_staged_documents() once every batch
holding one of its chunks succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from vectorpool.core.errors import FailedChunkRef
from vectorpool.db import managed_session, session_scope
from vectorpool.embeddings import EmbeddingRowData, delete_chunks
from vectorpool.pools import BulkEmbeddingOutput, KnowledgePool
from vectorpool.workflows.bulk_embed import store
from vectorpool.workflows.bulk_embed.context import BulkEmbedContext
from vectorpool.workflows.bulk_embed.models import BatchStatus, BulkEmbeddingBatch

logger = logging.getLogger(__name__)

DocKey = tuple[str, str]


@dataclass
class _DocBuffer:
    expected: int
    seen: int = 0
    rows: list[EmbeddingRowData] = field(default_factory=list)
    failed_indices: set[int] = field(default_factory=set)
    # input id -> vector, for staging
    embeddings: dict[str, list[float]] = field(default_factory=dict)


class BatchOutputProcessor:
    """Receives on_output callbacks for one batch."""

    def __init__(self, ctx: BulkEmbedContext, pool: KnowledgePool, batch: BulkEmbeddingBatch):
        self.ctx = ctx
        self.pool = pool
        self.batch = batch
        self.succeeded = 0
        self.failed_chunks: list[FailedChunkRef] = []
        self.received = 0
        self._seen_ids: set[str] = set()
        self._written: dict[DocKey, set[int]] = {}
        self._staged_ids: list[str] = []
        with session_scope(ctx.client) as session:
            expected = store.batch_doc_indices(session, batch.id)
        self._buffers: dict[DocKey, _DocBuffer] = {
            key: _DocBuffer(expected=count) for key, count in expected.items()
        }

    @property
    def failed(self) -> int:
        return len(self.failed_chunks)

    def __call__(self, output: BulkEmbeddingOutput) -> None:
        self.received += 1
        if output.id in self._seen_ids:
            logger.debug(f"Batch {self.batch.id}: duplicate output {output.id} ignored")
            return
        self._seen_ids.add(output.id)

        with session_scope(self.ctx.client) as session:
            meta = store.metadata_for_inputs(session, self.batch.run_id, [output.id]).get(output.id)
        if meta is None or meta.batch_id != self.batch.id:
            logger.warning(f"Batch {self.batch.id}: no input metadata for output {output.id}")
            return

        key = (meta.source_collection, meta.doc_id)
        buffer = self._buffers.setdefault(key, _DocBuffer(expected=1))
        buffer.seen += 1

        error = output.error
        if error is None and output.embedding is None:
            error = "Provider returned neither embedding nor error"
        if error is None and self.pool.dims and len(output.embedding) != self.pool.dims:
            error = f"Expected {self.pool.dims} dimensions, got {len(output.embedding)}"

        if error is not None:
            self.failed_chunks.append(
                FailedChunkRef(
                    collection=meta.source_collection,
                    document_id=meta.doc_id,
                    chunk_index=meta.chunk_index,
                )
            )
            buffer.failed_indices.add(meta.chunk_index)
            logger.debug(f"Batch {self.batch.id}: chunk {output.id} failed: {error}")
        else:
            self.succeeded += 1
            embedding = [float(x) for x in output.embedding]
            buffer.embeddings[output.id] = embedding
            buffer.rows.append(
                EmbeddingRowData(
                    chunk_index=meta.chunk_index,
                    chunk_text=meta.text,
                    embedding=embedding,
                    embedding_version=meta.embedding_version,
                    extension_fields=dict(meta.extension_fields or {}),
                )
            )

        if buffer.seen >= buffer.expected:
            self._flush(key)

    def _flush(self, key: DocKey) -> None:
        buffer = self._buffers.pop(key, None)
        if buffer is None or not buffer.rows:
            return
        collection, doc_id = key
        with session_scope(self.ctx.client) as session:
            run_indices = store.run_doc_indices(session, self.batch.run_id, collection, doc_id)

        if len(run_indices) > buffer.expected:
            with managed_session(self.ctx.client) as session:
                store.stage_embeddings(session, self.batch.run_id, buffer.embeddings)
            self._staged_ids.extend(buffer.embeddings)
            logger.debug(
                f"Batch {self.batch.id}: staged {len(buffer.embeddings)} chunk(s) of "
                f"{collection}:{doc_id}, which spans other batches"
            )
            return

        self.ctx.embeddings.apply_batch_results(
            pool=self.pool.name,
            collection=collection,
            doc_id=doc_id,
            rows=buffer.rows,
            failed_indices=buffer.failed_indices,
            run_indices=run_indices,
        )
        self._written.setdefault(key, set()).update(row.chunk_index for row in buffer.rows)

    def finish(self) -> None:
        """Record inputs the provider never answered, then write what is buffered."""
        if self.succeeded + self.failed < self.batch.input_count:
            for meta in store.iter_batch_metadata(
                self.ctx.client, self.batch.id, page_size=self.ctx.config.metadata_page_size
            ):
                if meta.input_id in self._seen_ids:
                    continue
                logger.warning(f"Batch {self.batch.id}: provider returned no output for {meta.input_id}")
                self.failed_chunks.append(
                    FailedChunkRef(
                        collection=meta.source_collection,
                        document_id=meta.doc_id,
                        chunk_index=meta.chunk_index,
                    )
                )
                buffer = self._buffers.get((meta.source_collection, meta.doc_id))
                if buffer is not None:
                    buffer.failed_indices.add(meta.chunk_index)
        for key in list(self._buffers):
            self._flush(key)

    def discard_writes(self) -> int:
        """Undo rows and staged embeddings from this processor (batch did not succeed)."""
        removed = 0
        if self._staged_ids:
            with managed_session(self.ctx.client) as session:
                removed += store.clear_staged_embeddings(
                    session, self.batch.run_id, self._staged_ids
                )
            self._staged_ids = []
        if self._written:
            with managed_session(self.ctx.client) as session:
                for (collection, doc_id), indices in self._written.items():
                    removed += delete_chunks(
                        session,
                        pool=self.pool.name,
                        collection=collection,
                        doc_id=doc_id,
                        indices=indices,
                    )
            self._written.clear()
        return removed

    def failed_chunk_data(self) -> list[dict]:
        return [ref.to_dict() for ref in self.failed_chunks]


def apply_staged_documents(ctx: BulkEmbedContext, pool: KnowledgePool, run_id: int) -> int:
    """
    Write the run's documents that were split across batches.

    A document is written, as one replace-set, only when every batch now
    holding one of its chunks succeeded. Otherwise it keeps its previous
    rows. Returns the number of documents written.
    """
    with session_scope(ctx.client) as session:
        keys = store.staged_documents(session, run_id)
        if not keys:
            return 0
        statuses = {b.id: BatchStatus(b.status) for b in store.list_batches(session, run_id)}

    written = 0
    for collection, doc_id in keys:
        with session_scope(ctx.client) as session:
            metas = store.document_metadata(session, run_id, collection, doc_id)
        if any(statuses.get(m.batch_id) != BatchStatus.SUCCEEDED for m in metas):
            logger.info(
                f"Run {run_id}: {collection}:{doc_id} has chunks in a batch that did not "
                "succeed; keeping its previous rows"
            )
            continue
        rows = [
            EmbeddingRowData(
                chunk_index=m.chunk_index,
                chunk_text=m.text,
                embedding=m.staged_embedding,
                embedding_version=m.embedding_version,
                extension_fields=dict(m.extension_fields or {}),
            )
            for m in metas
            if m.staged_embedding is not None
        ]
        ctx.embeddings.apply_batch_results(
            pool=pool.name,
            collection=collection,
            doc_id=doc_id,
            rows=rows,
            failed_indices={m.chunk_index for m in metas if m.staged_embedding is None},
            run_indices={m.chunk_index for m in metas},
        )
        written += 1
    return written
