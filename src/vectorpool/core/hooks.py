from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class BulkEmbedHooks:
    """Optional callbacks for lifecycle events of a bulk embedding run."""

    def on_run_start(self, *, run_id: int, pool: str, embedding_version: str) -> None:
        return None

    def on_batch_submitted(
        self,
        *,
        run_id: int,
        batch_index: int,
        provider_batch_id: str,
        input_count: int,
    ) -> None:
        return None

    def on_batch_result(
        self,
        *,
        run_id: int,
        batch_index: int,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        return None

    def on_run_end(
        self,
        *,
        run_id: int,
        pool: str,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        return None


class NoopBulkEmbedHooks(BulkEmbedHooks):
    """Default no-op hooks."""

    pass


class CompositeBulkEmbedHooks(BulkEmbedHooks):
    """Fan-out hooks to multiple hook implementations."""

    def __init__(self, hooks: list[BulkEmbedHooks]):
        self._hooks = [hook for hook in hooks if hook]

    def on_run_start(self, *, run_id: int, pool: str, embedding_version: str) -> None:
        for hook in self._hooks:
            hook.on_run_start(run_id=run_id, pool=pool, embedding_version=embedding_version)

    def on_batch_submitted(
        self,
        *,
        run_id: int,
        batch_index: int,
        provider_batch_id: str,
        input_count: int,
    ) -> None:
        for hook in self._hooks:
            hook.on_batch_submitted(
                run_id=run_id,
                batch_index=batch_index,
                provider_batch_id=provider_batch_id,
                input_count=input_count,
            )

    def on_batch_result(
        self,
        *,
        run_id: int,
        batch_index: int,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        for hook in self._hooks:
            hook.on_batch_result(
                run_id=run_id,
                batch_index=batch_index,
                status=status,
                succeeded=succeeded,
                failed=failed,
                error=error,
            )

    def on_run_end(
        self,
        *,
        run_id: int,
        pool: str,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        for hook in self._hooks:
            hook.on_run_end(
                run_id=run_id,
                pool=pool,
                status=status,
                succeeded=succeeded,
                failed=failed,
                error=error,
            )


class LoggingHooks(BulkEmbedHooks):
    """Write run and batch transitions to the module logger."""

    def on_run_start(self, *, run_id: int, pool: str, embedding_version: str) -> None:
        logger.info(f"Run {run_id} started for pool '{pool}' (version {embedding_version})")

    def on_batch_submitted(
        self,
        *,
        run_id: int,
        batch_index: int,
        provider_batch_id: str,
        input_count: int,
    ) -> None:
        logger.info(
            f"Run {run_id}: batch {batch_index} submitted as {provider_batch_id} "
            f"({input_count} inputs)"
        )

    def on_batch_result(
        self,
        *,
        run_id: int,
        batch_index: int,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        message = (
            f"Run {run_id}: batch {batch_index} {status} "
            f"(succeeded={succeeded}, failed={failed})"
        )
        if error:
            logger.warning(f"{message}: {error}")
        else:
            logger.info(message)

    def on_run_end(
        self,
        *,
        run_id: int,
        pool: str,
        status: str,
        succeeded: int,
        failed: int,
        error: str | None,
    ) -> None:
        message = f"Run {run_id} for pool '{pool}' {status} (succeeded={succeeded}, failed={failed})"
        if status == "failed":
            logger.error(f"{message}: {error}")
        else:
            logger.info(message)
