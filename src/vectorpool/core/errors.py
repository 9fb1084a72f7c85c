"""Error types for knowledge pools and bulk embedding.

Validation and provider submission errors are raised out of the prepare task
so the task queue records them. Conflicts, unknown ids and retry refusals are
returned as typed results instead (see vectorpool.workflows.bulk_embed.results).

Usage:
    from vectorpool.core import ChunkValidationError, FailedChunkRef

    raise ChunkValidationError(collection="posts", doc_id="42", invalid_indices=[1])

    ref = FailedChunkRef(collection="posts", document_id="42", chunk_index=3)
    ref.to_dict()  # {"collection": "posts", "documentId": "42", "chunkIndex": 3}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(slots=True)
class FailedChunkRef:
    """Reference to a single chunk the provider could not embed."""

    collection: str
    document_id: str
    chunk_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailedChunkRef":
        return cls(
            collection=data["collection"],
            document_id=str(data["documentId"]),
            chunk_index=int(data["chunkIndex"]),
        )

    def __str__(self) -> str:
        return f"{self.collection}:{self.document_id}:{self.chunk_index}"


class VectorpoolError(Exception):
    """Base class for vectorpool errors."""


class KnowledgePoolNotFoundError(VectorpoolError):
    """Raised when a pool name is not registered on the plugin."""

    def __init__(self, pool: str):
        self.pool = pool
        super().__init__(f"Knowledge pool '{pool}' not found")


class BulkEmbedNotConfiguredError(VectorpoolError):
    """Raised when a bulk run is requested for a pool without a provider adapter."""

    def __init__(self, pool: str):
        self.pool = pool
        super().__init__(f"Bulk embedding is not configured for knowledge pool '{pool}'")


class RunNotFoundError(VectorpoolError):
    def __init__(self, run_id: int):
        self.run_id = run_id
        super().__init__(f"Bulk embedding run {run_id} not found")


class ChunkValidationError(VectorpoolError):
    """Chunker output for a document contained malformed entries.

    Attributes:
        collection: Source collection of the offending document
        doc_id: Offending document id
        invalid_indices: Positions in the chunker output that are not
            mappings with a non-empty string "chunk"
        reason: Set instead of indices when the output as a whole is unusable
    """

    def __init__(
        self,
        collection: str,
        doc_id: str,
        invalid_indices: Iterable[int] = (),
        *,
        reason: Optional[str] = None,
    ):
        self.collection = collection
        self.doc_id = doc_id
        self.invalid_indices = list(invalid_indices)
        self.reason = reason
        if reason is None:
            indices = ", ".join(str(i) for i in self.invalid_indices)
            reason = (
                'Each entry must be an object with a "chunk" string. '
                f"Invalid indices: {indices}"
            )
        super().__init__(f"Invalid chunk data for {collection}:{doc_id}. {reason}")


class ProviderSubmissionError(VectorpoolError):
    """The provider adapter failed to accept or flush chunks."""


class BulkEmbedError(VectorpoolError):
    """Error handed to ProviderAdapter.on_error when a run ends with failures."""

    def __init__(
        self,
        message: str,
        *,
        run_id: Optional[int] = None,
        failed_chunks: Optional[List[FailedChunkRef]] = None,
        provider_batch_ids: Optional[List[str]] = None,
    ):
        self.message = message
        self.run_id = run_id
        self.failed_chunks = list(failed_chunks or [])
        self.provider_batch_ids = list(provider_batch_ids or [])
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "run_id": self.run_id,
            "failed_chunks": [ref.to_dict() for ref in self.failed_chunks],
            "provider_batch_ids": self.provider_batch_ids,
        }
