"""Bulk embedding runs: collection, submission, polling, completion and retry."""

from vectorpool.workflows.bulk_embed.config import BulkEmbedConfig
from vectorpool.workflows.bulk_embed.context import BulkEmbedContext
from vectorpool.workflows.bulk_embed.models import (
    BatchStatus,
    BulkEmbeddingBatch,
    BulkEmbeddingInputMetadata,
    BulkEmbeddingRun,
    RunStatus,
)
from vectorpool.workflows.bulk_embed.orchestrator import BulkEmbedOrchestrator
from vectorpool.workflows.bulk_embed.results import (
    BulkEmbedResult,
    RetryError,
    RetryOutcome,
    RetryResult,
)
from vectorpool.workflows.bulk_embed.retry import RetryCoordinator
from vectorpool.workflows.bulk_embed.tasks import (
    POLL_TASK,
    PREPARE_TASK,
    VECTORIZE_TASK,
    InlineTaskQueue,
    TaskQueue,
)

__all__ = [
    "BatchStatus",
    "BulkEmbedConfig",
    "BulkEmbedContext",
    "BulkEmbedOrchestrator",
    "BulkEmbedResult",
    "BulkEmbeddingBatch",
    "BulkEmbeddingInputMetadata",
    "BulkEmbeddingRun",
    "InlineTaskQueue",
    "POLL_TASK",
    "PREPARE_TASK",
    "RetryCoordinator",
    "RetryError",
    "RetryOutcome",
    "RetryResult",
    "RunStatus",
    "TaskQueue",
    "VECTORIZE_TASK",
]
