"""
Provider adapter contract.

An integrator subclasses ProviderAdapter to talk to an external batch
embedding API. The bulk pipeline drives it like this:

    submission = provider.add_chunk(chunk=BulkEmbeddingInput(id, text), is_last_chunk=False)
    # None while the provider keeps accumulating, a BatchSubmission once it flushed

    result = provider.poll_or_complete_batch(provider_batch_id="batch-1", on_output=handle)
    # on terminal success, handle() has been called once per input before returning

    provider.on_error(provider_batch_ids=[...], error=err, failed_chunk_data=[...],
                      failed_chunk_count=3)

Accumulation window: when add_chunk returns a submission for a chunk that is
not the last one, every chunk handed over *before* it was submitted and the
current chunk opens the next window. For the last chunk, everything pending
(current chunk included) was submitted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

PROVIDER_STATUSES = ("queued", "running", "succeeded", "failed", "canceled")
TERMINAL_PROVIDER_STATUSES = ("succeeded", "failed", "canceled")


@dataclass(slots=True)
class BulkEmbeddingInput:
    id: str
    text: str


@dataclass(slots=True)
class BulkEmbeddingOutput:
    """One provider result: either an embedding or an error for input `id`."""

    id: str
    embedding: Optional[list[float]] = None
    error: Optional[str] = None


@dataclass(slots=True)
class BatchSubmission:
    provider_batch_id: str
    input_file_ref: Optional[str] = None


@dataclass(slots=True)
class PollResult:
    status: str
    error: Optional[str] = None

    def __post_init__(self):
        if self.status not in PROVIDER_STATUSES:
            raise ValueError(
                f"Unknown provider batch status '{self.status}'. "
                f"Expected one of: {', '.join(PROVIDER_STATUSES)}"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROVIDER_STATUSES


OutputHandler = Callable[[BulkEmbeddingOutput], None]


class ProviderAdapter(ABC):
    """Base class for batch embedding providers. on_error is optional."""

    @abstractmethod
    def add_chunk(
        self,
        *,
        chunk: BulkEmbeddingInput,
        is_last_chunk: bool,
    ) -> Optional[BatchSubmission]:
        """Hand one chunk over. Returns a submission once the provider flushed a batch."""

    @abstractmethod
    def poll_or_complete_batch(
        self,
        *,
        provider_batch_id: str,
        on_output: OutputHandler,
    ) -> PollResult:
        """Check a batch; on success stream every output through `on_output` first."""

    def on_error(
        self,
        *,
        provider_batch_ids: list[str],
        error: Exception,
        failed_chunk_data: list[dict[str, Any]],
        failed_chunk_count: int,
    ) -> None:
        return None
