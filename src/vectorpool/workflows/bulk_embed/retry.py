"""
Retrying a single failed batch.

The failed batch's surviving input metadata is streamed back through the
provider's accumulation window, producing replacement batch(es) with fresh
indices. The metadata is re-pointed at the replacements, the old batch is
marked `retried`, and the run is reopened so the normal poll loop picks the
replacements up. Sibling batches and already-embedded chunks are untouched.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from vectorpool.core.errors import VectorpoolError
from vectorpool.db import managed_session, session_scope
from vectorpool.pools import BatchSubmission, KnowledgePool
from vectorpool.workflows.bulk_embed import store
from vectorpool.workflows.bulk_embed.collector import (
    PendingChunk,
    SubmissionResult,
    submit_chunks,
)
from vectorpool.workflows.bulk_embed.context import BulkEmbedContext
from vectorpool.workflows.bulk_embed.models import (
    ACTIVE_RUN_STATUSES,
    BatchStatus,
    BulkEmbeddingBatch,
    BulkEmbeddingRun,
    RunStatus,
)
from vectorpool.workflows.bulk_embed.orchestrator import notify_provider_error
from vectorpool.workflows.bulk_embed.results import RetryError, RetryOutcome, RetryResult
from vectorpool.workflows.bulk_embed.tasks import POLL_TASK

logger = logging.getLogger(__name__)


class RetryCoordinator:
    def __init__(self, ctx: BulkEmbedContext):
        self.ctx = ctx

    def _existing_replacement(self, batch: BulkEmbeddingBatch) -> RetryOutcome:
        if batch.retried_by_batch_id is None:
            return RetryError(
                f"Retry of batch {batch.id} is already in progress", conflict=True
            )
        replacement = store.get_batch(self.ctx.client, batch.retried_by_batch_id)
        return RetryResult(
            batch_id=batch.id,
            new_batch_id=batch.retried_by_batch_id,
            run_id=batch.run_id,
            status=BatchStatus(replacement.status).value if replacement else "unknown",
            message=f"Batch {batch.id} was already retried as batch {batch.retried_by_batch_id}",
        )

    def retry(self, batch_id: int) -> RetryOutcome:
        batch = store.get_batch(self.ctx.client, batch_id)
        if batch is None:
            return RetryError(f"Batch {batch_id} not found", not_found=True)

        status = BatchStatus(batch.status)
        if status == BatchStatus.RETRIED:
            return self._existing_replacement(batch)
        if status != BatchStatus.FAILED:
            return RetryError(
                f"Batch {batch_id} is {status.value}; only failed batches can be retried"
            )

        run = store.get_run(self.ctx.client, batch.run_id)
        if run is None:
            return RetryError(f"Run {batch.run_id} not found", not_found=True)
        run_status = RunStatus(run.status)
        if run_status in ACTIVE_RUN_STATUSES:
            return RetryError(
                f"Cannot retry batch while run is {run_status.value}. "
                "Wait for the run to complete first.",
                conflict=True,
            )

        try:
            pool = self.ctx.get_bulk_pool(run.pool)
        except VectorpoolError as e:
            return RetryError(str(e))

        with managed_session(self.ctx.client) as session:
            other = store.find_active_run(session, run.pool, exclude_run_id=run.id)
            if other is not None:
                return RetryError(
                    f"Bulk embedding run {other.id} is active for pool '{run.pool}'",
                    conflict=True,
                )
            claimed = store.claim_batch_for_retry(session, batch_id)

        if not claimed:
            current = store.get_batch(self.ctx.client, batch_id)
            if current is not None and current.status == BatchStatus.RETRIED:
                return self._existing_replacement(current)
            return RetryError(f"Batch {batch_id} changed state during retry", conflict=True)

        with session_scope(self.ctx.client) as session:
            surviving = store.count_batch_metadata(session, batch_id)
        if surviving == 0:
            store.revert_retry_claim(self.ctx.client, batch_id)
            return RetryError(
                f"No input metadata found for batch {batch_id}; cannot reconstruct its chunks"
            )

        return self._resubmit(pool, batch)

    def _resubmit(self, pool: KnowledgePool, batch: BulkEmbeddingBatch) -> RetryOutcome:
        def persist(submission: BatchSubmission, chunks: list[PendingChunk]) -> BulkEmbeddingBatch:
            with managed_session(self.ctx.client) as session:
                replacement = store.create_batch(
                    session,
                    run_id=batch.run_id,
                    provider_batch_id=submission.provider_batch_id,
                    input_file_ref=submission.input_file_ref,
                    input_count=len(chunks),
                )
                store.repoint_metadata(
                    session,
                    from_batch_id=batch.id,
                    to_batch_id=replacement.id,
                    input_ids=[c.input_id for c in chunks],
                )
            self.ctx.hooks.on_batch_submitted(
                run_id=batch.run_id,
                batch_index=replacement.batch_index,
                provider_batch_id=replacement.provider_batch_id,
                input_count=replacement.input_count,
            )
            return replacement

        chunks = (
            PendingChunk.from_metadata(meta)
            for meta in store.iter_batch_metadata(
                self.ctx.client, batch.id, page_size=self.ctx.config.metadata_page_size
            )
        )
        result = SubmissionResult()
        try:
            submit_chunks(pool.provider, chunks, persist, result)
            first = result.batches[0]
            with managed_session(self.ctx.client) as session:
                store.link_retry(session, batch.id, replacement_id=first.id)
                run = session.get(BulkEmbeddingRun, batch.run_id)
                if not store.reopen_run(session, run):
                    logger.info(f"Run {batch.run_id} already running; replacement joins it")
                store.update_run(
                    session,
                    batch.run_id,
                    total_batches=len(
                        store.list_batches(session, batch.run_id, include_retried=False)
                    ),
                )
        except IntegrityError as e:
            self._rollback(pool, batch, result, e)
            message = f"Another bulk embedding run became active for pool '{pool.name}'"
            logger.warning(message)
            return RetryError(message, conflict=True)
        except Exception as e:
            self._rollback(pool, batch, result, e)
            message = f"Retry submission failed for batch {batch.id}: {e}"
            logger.error(message)
            return RetryError(message)

        self.ctx.queue.enqueue(POLL_TASK, {"run_id": batch.run_id})
        logger.info(
            f"Batch {batch.id} retried as batch {first.batch_index} "
            f"({first.provider_batch_id}, {result.inputs} inputs)"
        )
        return RetryResult(
            batch_id=batch.id,
            new_batch_id=first.id,
            run_id=batch.run_id,
            status=BatchStatus.QUEUED.value,
            message=(
                f"Batch {batch.id} resubmitted as batch {first.batch_index} "
                f"with {result.inputs} input(s)"
            ),
        )

    def _rollback(
        self,
        pool: KnowledgePool,
        batch: BulkEmbeddingBatch,
        result: SubmissionResult,
        error: Exception,
    ) -> None:
        """Undo a half-done retry: metadata back on the old batch, which is failed again."""
        if result.batches:
            with managed_session(self.ctx.client) as session:
                store.abandon_replacements(
                    session,
                    original_batch_id=batch.id,
                    replacement_ids=[b.id for b in result.batches],
                    error=f"Retry aborted: {error}",
                )
            notify_provider_error(
                pool,
                provider_batch_ids=result.provider_batch_ids,
                error=error,
                failed_chunk_data=[],
                failed_chunk_count=0,
            )
        store.revert_retry_claim(self.ctx.client, batch.id)
