"""Core building blocks shared by the embedding workflows."""

from vectorpool.core.embedding import (
    LiteLLMEmbedder,
    bytes_to_embedding,
    cosine_similarity,
    embedding_to_bytes,
    generate_embeddings,
)
from vectorpool.core.errors import (
    BulkEmbedError,
    BulkEmbedNotConfiguredError,
    ChunkValidationError,
    FailedChunkRef,
    KnowledgePoolNotFoundError,
    ProviderSubmissionError,
    RunNotFoundError,
    VectorpoolError,
)
from vectorpool.core.hooks import (
    BulkEmbedHooks,
    CompositeBulkEmbedHooks,
    LoggingHooks,
    NoopBulkEmbedHooks,
)

__all__ = [
    # Embeddings
    "LiteLLMEmbedder",
    "bytes_to_embedding",
    "cosine_similarity",
    "embedding_to_bytes",
    "generate_embeddings",
    # Errors
    "BulkEmbedError",
    "BulkEmbedNotConfiguredError",
    "ChunkValidationError",
    "FailedChunkRef",
    "KnowledgePoolNotFoundError",
    "ProviderSubmissionError",
    "RunNotFoundError",
    "VectorpoolError",
    # Hooks
    "BulkEmbedHooks",
    "CompositeBulkEmbedHooks",
    "LoggingHooks",
    "NoopBulkEmbedHooks",
]
