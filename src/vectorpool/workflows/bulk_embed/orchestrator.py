"""
Bulk embedding run orchestration.

    queued --prepare--> running --poll...--> succeeded | failed | canceled

The prepare task collects and submits chunks, then hands over to a single
recurring poll-or-complete task per run. That task polls every open batch,
applies finished batches, and either requeues itself (with a delay) or
completes the run. Both tasks may run more than once for the same run.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from vectorpool.core.errors import (
    BulkEmbedError,
    ChunkValidationError,
    FailedChunkRef,
    RunNotFoundError,
    VectorpoolError,
)
from vectorpool.db import managed_session, session_scope, utcnow
from vectorpool.pools import KnowledgePool
from vectorpool.workflows.bulk_embed import store
from vectorpool.workflows.bulk_embed.collector import ChunkCollector, SubmissionResult
from vectorpool.workflows.bulk_embed.completion import (
    BatchOutputProcessor,
    apply_staged_documents,
)
from vectorpool.workflows.bulk_embed.context import BulkEmbedContext
from vectorpool.workflows.bulk_embed.eligibility import Baseline, iter_eligible_documents
from vectorpool.workflows.bulk_embed.models import (
    BatchStatus,
    BulkEmbeddingBatch,
    BulkEmbeddingRun,
    RunStatus,
)
from vectorpool.workflows.bulk_embed.results import BulkEmbedResult
from vectorpool.workflows.bulk_embed.tasks import POLL_TASK, PREPARE_TASK

logger = logging.getLogger(__name__)

NO_BATCHES_ERROR = "No batches found for run"
INTERRUPTED_PREPARE_ERROR = "Preparation was interrupted before all chunks were submitted"


def notify_provider_error(
    pool: KnowledgePool,
    *,
    provider_batch_ids: list[str],
    error: Exception,
    failed_chunk_data: list[dict[str, Any]],
    failed_chunk_count: int,
) -> None:
    """Call the provider's on_error hook; its failures are logged, never raised."""
    try:
        pool.provider.on_error(
            provider_batch_ids=provider_batch_ids,
            error=error,
            failed_chunk_data=failed_chunk_data,
            failed_chunk_count=failed_chunk_count,
        )
    except Exception as e:
        logger.warning(f"Provider on_error hook failed for pool '{pool.name}': {e}")


class BulkEmbedOrchestrator:
    """Owns run lifecycle transitions for one plugin instance."""

    def __init__(self, ctx: BulkEmbedContext):
        self.ctx = ctx

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    def start(self, pool_name: str) -> BulkEmbedResult:
        """
        Create a queued run for `pool_name` and enqueue its prepare task.

        Raises:
            KnowledgePoolNotFoundError: unknown pool
            BulkEmbedNotConfiguredError: pool has no provider adapter
        """
        pool = self.ctx.get_bulk_pool(pool_name)
        try:
            run = store.create_run(
                self.ctx.client, pool=pool.name, embedding_version=pool.embedding_version
            )
        except store.ActiveRunConflict as e:
            active = e.active_run
            logger.warning(str(e))
            return BulkEmbedResult(
                run_id=active.id if active else None,
                status=RunStatus(active.status).value if active else RunStatus.RUNNING.value,
                conflict=True,
                message=str(e),
            )

        logger.info(f"Queued bulk embedding run {run.id} for pool '{pool.name}'")
        self.ctx.queue.enqueue(PREPARE_TASK, {"run_id": run.id})
        return BulkEmbedResult(run_id=run.id, status=RunStatus.QUEUED.value)

    def resume(self, run_id: int) -> dict[str, Any]:
        """
        Requeue work for a running run whose task was lost.

        A run that never finished preparing goes back through prepare, which
        fails it; everything else gets a fresh poll.
        """
        run = self._require_run(run_id)
        if run.status != RunStatus.RUNNING:
            return {"run_id": run_id, "status": RunStatus(run.status).value, "skipped": True}
        task = PREPARE_TASK if run.submitted_at is None else POLL_TASK
        self.ctx.queue.enqueue(task, {"run_id": run_id})
        return {"run_id": run_id, "status": RunStatus.RUNNING.value, "requeued": True, "task": task}

    # ------------------------------------------------------------------
    # Prepare task
    # ------------------------------------------------------------------

    def _require_run(self, run_id: int) -> BulkEmbeddingRun:
        run = store.get_run(self.ctx.client, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def _resolve_pool(self, run: BulkEmbeddingRun) -> KnowledgePool:
        try:
            return self.ctx.get_bulk_pool(run.pool)
        except VectorpoolError as e:
            self._fail_run(run, str(e))
            raise

    def prepare(self, run_id: int) -> dict[str, Any]:
        """
        Collect and submit the run's chunks.

        Raises:
            RunNotFoundError: unknown run id
            ChunkValidationError: chunker output malformed (run marked failed)
            ProviderSubmissionError / chunker errors: run marked failed, re-raised
        """
        run = self._require_run(run_id)
        if run.status == RunStatus.RUNNING and run.submitted_at is None:
            return self._fail_interrupted_prepare(run)
        if run.status != RunStatus.QUEUED:
            logger.info(f"Run {run_id} is {RunStatus(run.status).value}; prepare skipped")
            return {"run_id": run_id, "status": RunStatus(run.status).value, "skipped": True}

        with managed_session(self.ctx.client) as session:
            other = store.find_active_run(session, run.pool, exclude_run_id=run_id)
            if other is not None:
                message = (
                    f"Bulk embedding already in progress for pool '{run.pool}' (run {other.id})"
                )
                logger.warning(f"Run {run_id}: {message}")
                return {
                    "run_id": run_id,
                    "status": RunStatus.QUEUED.value,
                    "conflict": True,
                    "message": message,
                }
            if not store.start_run(session, run_id):
                return {"run_id": run_id, "status": "skipped", "skipped": True}

        pool = self._resolve_pool(run)
        self.ctx.hooks.on_run_start(
            run_id=run_id, pool=run.pool, embedding_version=run.embedding_version
        )

        result = SubmissionResult()
        try:
            with session_scope(self.ctx.client) as session:
                baseline_run = store.latest_succeeded_run(session, run.pool)
            baseline = Baseline.from_run(baseline_run, run.embedding_version)
            eligible = iter_eligible_documents(
                pool,
                documents=self.ctx.documents,
                embeddings=self.ctx.embeddings,
                baseline=baseline,
                page_size=self.ctx.config.page_size,
            )
            collector = ChunkCollector(self.ctx, pool, run_id, run.embedding_version)
            collector.collect(eligible, result)
        except ChunkValidationError as e:
            self._fail_run(run, str(e))
            raise
        except Exception as e:
            notify_provider_error(
                pool,
                provider_batch_ids=result.provider_batch_ids,
                error=e,
                failed_chunk_data=[],
                failed_chunk_count=0,
            )
            self._fail_run(run, str(e))
            raise

        if not result.batches:
            with managed_session(self.ctx.client) as session:
                store.finish_run(
                    session,
                    run_id,
                    status=RunStatus.SUCCEEDED,
                    total_batches=0,
                    inputs=0,
                    succeeded=0,
                    failed=0,
                )
            logger.info(f"Run {run_id}: nothing to embed for pool '{run.pool}'")
            self.ctx.hooks.on_run_end(
                run_id=run_id,
                pool=run.pool,
                status=RunStatus.SUCCEEDED.value,
                succeeded=0,
                failed=0,
                error=None,
            )
            return {"run_id": run_id, "status": RunStatus.SUCCEEDED.value, "batches": 0, "inputs": 0}

        with managed_session(self.ctx.client) as session:
            store.update_run(
                session,
                run_id,
                total_batches=len(result.batches),
                inputs=result.inputs,
                submitted_at=utcnow(),
            )
        self.ctx.queue.enqueue(POLL_TASK, {"run_id": run_id})
        return {
            "run_id": run_id,
            "status": RunStatus.RUNNING.value,
            "batches": len(result.batches),
            "inputs": result.inputs,
        }

    def _fail_interrupted_prepare(self, run: BulkEmbeddingRun) -> dict[str, Any]:
        """
        Fail a run whose prepare task died between starting and handing over to polling.

        Its chunk set may be incomplete, so completing it could pass off a
        partial run as a success. Batches it managed to submit are canceled
        and reported to the provider; the pool is free for a new run.
        """
        pool = self._resolve_pool(run)
        with managed_session(self.ctx.client) as session:
            provider_batch_ids = store.cancel_open_batches(
                session, run.id, error=INTERRUPTED_PREPARE_ERROR
            )
        self._fail_run(run, INTERRUPTED_PREPARE_ERROR)
        notify_provider_error(
            pool,
            provider_batch_ids=provider_batch_ids,
            error=BulkEmbedError(
                f"Bulk embedding run {run.id}: {INTERRUPTED_PREPARE_ERROR}",
                run_id=run.id,
                provider_batch_ids=provider_batch_ids,
            ),
            failed_chunk_data=[],
            failed_chunk_count=0,
        )
        return {
            "run_id": run.id,
            "status": RunStatus.FAILED.value,
            "error": INTERRUPTED_PREPARE_ERROR,
            "canceled_batches": len(provider_batch_ids),
        }

    def _fail_run(self, run: BulkEmbeddingRun, error: str) -> None:
        with managed_session(self.ctx.client) as session:
            won = store.finish_run(session, run.id, status=RunStatus.FAILED, error=error)
        if won:
            logger.error(f"Run {run.id} for pool '{run.pool}' failed: {error}")
            self.ctx.hooks.on_run_end(
                run_id=run.id,
                pool=run.pool,
                status=RunStatus.FAILED.value,
                succeeded=0,
                failed=0,
                error=error,
            )

    # ------------------------------------------------------------------
    # Poll-or-complete task
    # ------------------------------------------------------------------

    def poll_or_complete(self, run_id: int) -> dict[str, Any]:
        run = self._require_run(run_id)
        status = RunStatus(run.status)
        if status != RunStatus.RUNNING:
            logger.debug(f"Run {run_id} is {status.value}; poll skipped")
            return {"run_id": run_id, "status": status.value, "skipped": True}

        pool = self._resolve_pool(run)

        with session_scope(self.ctx.client) as session:
            batches = store.list_batches(session, run_id)

        if not batches:
            self._fail_run(run, NO_BATCHES_ERROR)
            return {"run_id": run_id, "status": RunStatus.FAILED.value, "error": NO_BATCHES_ERROR}

        open_batches = 0
        for batch in batches:
            if BatchStatus(batch.status).is_terminal:
                continue
            if self._poll_batch(pool, batch):
                open_batches += 1

        if open_batches:
            logger.debug(f"Run {run_id}: {open_batches} batch(es) still open, requeueing poll")
            self.ctx.queue.enqueue(
                POLL_TASK,
                {"run_id": run_id},
                delay_seconds=self.ctx.config.poll_interval_seconds,
            )
            return {"run_id": run_id, "status": RunStatus.RUNNING.value, "open_batches": open_batches}

        return self._complete_run(run, pool)

    def _poll_batch(self, pool: KnowledgePool, batch: BulkEmbeddingBatch) -> bool:
        """Poll one batch. Returns True while it is still open."""
        token = store.claim_batch_lease(
            self.ctx.client, batch.id, lease_seconds=self.ctx.config.lease_seconds
        )
        if token is None:
            # Another poll owns it, or it just turned terminal
            current = store.get_batch(self.ctx.client, batch.id)
            return current is not None and not BatchStatus(current.status).is_terminal

        processor = BatchOutputProcessor(self.ctx, pool, batch)
        try:
            poll = pool.provider.poll_or_complete_batch(
                provider_batch_id=batch.provider_batch_id,
                on_output=processor,
            )
        except Exception:
            store.release_batch_lease(self.ctx.client, batch.id, token)
            raise

        if not poll.is_terminal:
            if processor.received:
                processor.discard_writes()
                logger.warning(
                    f"Batch {batch.id}: discarded {processor.received} output(s) received "
                    f"while {poll.status}; outputs are applied when the batch completes"
                )
            store.release_batch_lease(
                self.ctx.client, batch.id, token, status=BatchStatus(poll.status)
            )
            return True

        if poll.status == BatchStatus.SUCCEEDED.value:
            processor.finish()
            status = BatchStatus.SUCCEEDED
            succeeded, failed = processor.succeeded, processor.failed
            error = None
            failed_chunk_data = processor.failed_chunk_data()
        else:
            if processor.discard_writes():
                logger.error(
                    f"Batch {batch.id}: provider streamed outputs for a {poll.status} batch; "
                    "rows written from them were removed"
                )
            status = BatchStatus(poll.status)
            succeeded, failed = 0, batch.input_count
            error = poll.error or f"Provider batch {batch.provider_batch_id} {poll.status}"
            failed_chunk_data = None

        with managed_session(self.ctx.client) as session:
            won = store.complete_batch(
                session,
                batch.id,
                token=token,
                status=status,
                succeeded_count=succeeded,
                failed_count=failed,
                error=error,
                failed_chunk_data=failed_chunk_data,
            )
        if not won:
            # The lease holder now owns the outcome
            current = store.get_batch(self.ctx.client, batch.id)
            still_open = current is not None and not BatchStatus(current.status).is_terminal
            if current is not None and current.status in (
                BatchStatus.FAILED,
                BatchStatus.CANCELED,
                BatchStatus.RETRIED,
            ):
                processor.discard_writes()
            logger.warning(
                f"Batch {batch.id}: lease lost before completion was recorded "
                f"(now {BatchStatus(current.status).value if current else 'missing'})"
            )
            return still_open

        self.ctx.hooks.on_batch_result(
            run_id=batch.run_id,
            batch_index=batch.batch_index,
            status=status.value,
            succeeded=succeeded,
            failed=failed,
            error=error,
        )
        return False

    def _complete_run(self, run: BulkEmbeddingRun, pool: KnowledgePool) -> dict[str, Any]:
        with session_scope(self.ctx.client) as session:
            batches = store.list_batches(session, run.id, include_retried=False)

        open_batches = [b for b in batches if not BatchStatus(b.status).is_terminal]
        if open_batches:
            logger.debug(
                f"Run {run.id}: batch(es) {', '.join(str(b.id) for b in open_batches)} "
                "not terminal yet, requeueing poll"
            )
            self.ctx.queue.enqueue(
                POLL_TASK,
                {"run_id": run.id},
                delay_seconds=self.ctx.config.poll_interval_seconds,
            )
            return {
                "run_id": run.id,
                "status": RunStatus.RUNNING.value,
                "open_batches": len(open_batches),
            }

        staged = apply_staged_documents(self.ctx, pool, run.id)
        if staged:
            logger.info(f"Run {run.id}: wrote {staged} document(s) split across batches")

        succeeded = sum(b.succeeded_count for b in batches)
        failed = sum(b.failed_count for b in batches)
        failed_chunk_data: list[dict] = []
        for b in batches:
            failed_chunk_data.extend(b.failed_chunk_data or [])
        failed_batches = [
            b for b in batches if b.status in (BatchStatus.FAILED, BatchStatus.CANCELED)
        ]

        status = RunStatus.FAILED if failed_batches else RunStatus.SUCCEEDED
        error: Optional[str] = None
        if failed_batches:
            error = (
                f"{len(failed_batches)} batch(es) did not succeed: "
                + "; ".join(b.error or BatchStatus(b.status).value for b in failed_batches)
            )

        with managed_session(self.ctx.client) as session:
            won = store.finish_run(
                session,
                run.id,
                status=status,
                from_statuses=[RunStatus.RUNNING],
                total_batches=len(batches),
                succeeded=succeeded,
                failed=failed,
                error=error,
                failed_chunk_data=failed_chunk_data or None,
            )
            cleaned = 0
            if won and status == RunStatus.SUCCEEDED:
                cleaned = store.delete_run_metadata(session, run.id)

        if not won:
            current = store.get_run(self.ctx.client, run.id)
            return {
                "run_id": run.id,
                "status": RunStatus(current.status).value if current else "unknown",
                "skipped": True,
            }

        if status == RunStatus.SUCCEEDED:
            logger.info(
                f"Run {run.id} succeeded (succeeded={succeeded}, failed={failed}, "
                f"metadata rows cleaned={cleaned})"
            )
        else:
            logger.error(f"Run {run.id} failed: {error}")

        if failed:
            affected = [b.provider_batch_id for b in batches if b.failed_count > 0]
            notify_provider_error(
                pool,
                provider_batch_ids=affected,
                error=BulkEmbedError(
                    f"Bulk embedding run {run.id}: {failed} chunk(s) failed",
                    run_id=run.id,
                    failed_chunks=[FailedChunkRef.from_dict(d) for d in failed_chunk_data],
                    provider_batch_ids=affected,
                ),
                failed_chunk_data=failed_chunk_data,
                failed_chunk_count=failed,
            )

        self.ctx.hooks.on_run_end(
            run_id=run.id,
            pool=run.pool,
            status=status.value,
            succeeded=succeeded,
            failed=failed,
            error=error,
        )
        return {
            "run_id": run.id,
            "status": status.value,
            "succeeded": succeeded,
            "failed": failed,
            "failed_chunk_data": failed_chunk_data,
        }
