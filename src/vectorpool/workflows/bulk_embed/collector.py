"""
Chunk collection and provider submission.

Pass 1 runs every eligible document through its collection chunker and
validates the output, spooling valid chunks to a temporary file. Nothing
reaches the provider until the whole eligible set validated, so a malformed
entry anywhere leaves zero batches and zero metadata behind.

Pass 2 streams the spooled chunks into ProviderAdapter.add_chunk and
persists a Batch plus its InputMetadata rows each time the provider flushes.
"""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Iterable, Iterator, Optional

from vectorpool.core.errors import ProviderSubmissionError
from vectorpool.db import managed_session
from vectorpool.pools import (
    BatchSubmission,
    BulkEmbeddingInput,
    KnowledgePool,
    ProviderAdapter,
    build_input_id,
    validate_chunk_data,
)
from vectorpool.workflows.bulk_embed import store
from vectorpool.workflows.bulk_embed.context import BulkEmbedContext
from vectorpool.workflows.bulk_embed.eligibility import EligibleDocument
from vectorpool.workflows.bulk_embed.models import BulkEmbeddingBatch, BulkEmbeddingInputMetadata

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingChunk:
    input_id: str
    text: str
    collection: str
    doc_id: str
    chunk_index: int
    extension_fields: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "input_id": self.input_id,
                "text": self.text,
                "collection": self.collection,
                "doc_id": self.doc_id,
                "chunk_index": self.chunk_index,
                "extension_fields": self.extension_fields,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, line: str) -> "PendingChunk":
        return cls(**json.loads(line))

    @classmethod
    def from_metadata(cls, meta: BulkEmbeddingInputMetadata) -> "PendingChunk":
        return cls(
            input_id=meta.input_id,
            text=meta.text,
            collection=meta.source_collection,
            doc_id=meta.doc_id,
            chunk_index=meta.chunk_index,
            extension_fields=dict(meta.extension_fields or {}),
        )


SubmitCallback = Callable[[BatchSubmission, list[PendingChunk]], BulkEmbeddingBatch]


@dataclass
class SubmissionResult:
    batches: list[BulkEmbeddingBatch] = field(default_factory=list)
    inputs: int = 0

    @property
    def provider_batch_ids(self) -> list[str]:
        return [b.provider_batch_id for b in self.batches]


def _with_last_flag(chunks: Iterable[PendingChunk]) -> Iterator[tuple[PendingChunk, bool]]:
    iterator = iter(chunks)
    try:
        current = next(iterator)
    except StopIteration:
        return
    for upcoming in iterator:
        yield current, False
        current = upcoming
    yield current, True


def submit_chunks(
    provider: ProviderAdapter,
    chunks: Iterable[PendingChunk],
    on_submit: SubmitCallback,
    result: Optional[SubmissionResult] = None,
) -> SubmissionResult:
    """
    Drive the provider's accumulation window over `chunks`.

    When add_chunk returns a submission for a chunk that is not the last,
    everything pending before that chunk was submitted and the chunk itself
    opens the next window; for the last chunk, everything pending was.
    `result` is filled in as batches are persisted, so a caller catching an
    error still sees what was submitted.

    Raises:
        ProviderSubmissionError: provider flushed nothing, or never flushed
            the final window
    """
    result = result if result is not None else SubmissionResult()
    pending: list[PendingChunk] = []

    for chunk, is_last in _with_last_flag(chunks):
        pending.append(chunk)
        submission = provider.add_chunk(
            chunk=BulkEmbeddingInput(id=chunk.input_id, text=chunk.text),
            is_last_chunk=is_last,
        )
        if submission is None:
            continue

        if is_last:
            submitted, pending = pending, []
        else:
            submitted, pending = pending[:-1], pending[-1:]
        if not submitted:
            raise ProviderSubmissionError(
                f"Provider returned batch {submission.provider_batch_id} with no pending chunks"
            )

        result.batches.append(on_submit(submission, submitted))
        result.inputs += len(submitted)

    if pending:
        raise ProviderSubmissionError(
            f"Provider did not submit {len(pending)} pending chunk(s) after the last chunk"
        )
    return result


class ChunkCollector:
    """Collect and submit the chunks of one run."""

    def __init__(self, ctx: BulkEmbedContext, pool: KnowledgePool, run_id: int, embedding_version: str):
        self.ctx = ctx
        self.pool = pool
        self.run_id = run_id
        self.embedding_version = embedding_version

    def spool(self, eligible: Iterable[EligibleDocument], spool_file: IO[str]) -> int:
        """Validation pass. Returns the number of chunks spooled."""
        count = 0
        for item in eligible:
            collection_config = self.pool.collections[item.collection]
            raw = collection_config.to_knowledge_pool(item.doc)
            entries = validate_chunk_data(item.collection, item.doc_id, raw)
            for index, entry in enumerate(entries):
                chunk = PendingChunk(
                    input_id=build_input_id(item.collection, item.doc_id, index),
                    text=entry.text,
                    collection=item.collection,
                    doc_id=item.doc_id,
                    chunk_index=index,
                    extension_fields=entry.extension_fields,
                )
                spool_file.write(chunk.to_json() + "\n")
                count += 1
        spool_file.flush()
        return count

    def _read_spool(self, spool_file: IO[str]) -> Iterator[PendingChunk]:
        spool_file.seek(0)
        for line in spool_file:
            if line.strip():
                yield PendingChunk.from_json(line)

    def persist_submission(
        self, submission: BatchSubmission, chunks: list[PendingChunk]
    ) -> BulkEmbeddingBatch:
        with managed_session(self.ctx.client) as session:
            batch = store.create_batch(
                session,
                run_id=self.run_id,
                provider_batch_id=submission.provider_batch_id,
                input_file_ref=submission.input_file_ref,
                input_count=len(chunks),
            )
            store.add_metadata(
                session,
                [
                    BulkEmbeddingInputMetadata(
                        run_id=self.run_id,
                        batch_id=batch.id,
                        input_id=chunk.input_id,
                        text=chunk.text,
                        source_collection=chunk.collection,
                        doc_id=chunk.doc_id,
                        chunk_index=chunk.chunk_index,
                        embedding_version=self.embedding_version,
                        extension_fields=chunk.extension_fields or None,
                    )
                    for chunk in chunks
                ],
            )
        self.ctx.hooks.on_batch_submitted(
            run_id=self.run_id,
            batch_index=batch.batch_index,
            provider_batch_id=batch.provider_batch_id,
            input_count=batch.input_count,
        )
        logger.info(
            f"Run {self.run_id}: submitted batch {batch.batch_index} "
            f"({batch.provider_batch_id}, {batch.input_count} inputs)"
        )
        return batch

    def collect(
        self, eligible: Iterable[EligibleDocument], result: SubmissionResult
    ) -> SubmissionResult:
        """Validate everything, then submit everything."""
        with tempfile.TemporaryFile(mode="w+", encoding="utf-8", prefix="vectorpool-chunks-") as spool_file:
            total = self.spool(eligible, spool_file)
            logger.info(f"Run {self.run_id}: {total} chunk(s) validated for pool '{self.pool.name}'")
            if total == 0:
                return result
            return submit_chunks(
                self.pool.provider,
                self._read_spool(spool_file),
                self.persist_submission,
                result,
            )
