"""Knowledge pools and the capabilities they are built from."""

from vectorpool.pools.capabilities import Chunker, EligibilityPredicate, EmbedDocs, EmbedQuery
from vectorpool.pools.chunks import ChunkEntry, build_input_id, validate_chunk_data
from vectorpool.pools.pool import CollectionConfig, KnowledgePool
from vectorpool.pools.provider import (
    TERMINAL_PROVIDER_STATUSES,
    BatchSubmission,
    BulkEmbeddingInput,
    BulkEmbeddingOutput,
    OutputHandler,
    PollResult,
    ProviderAdapter,
)

__all__ = [
    "BatchSubmission",
    "BulkEmbeddingInput",
    "BulkEmbeddingOutput",
    "ChunkEntry",
    "Chunker",
    "CollectionConfig",
    "EligibilityPredicate",
    "EmbedDocs",
    "EmbedQuery",
    "KnowledgePool",
    "OutputHandler",
    "PollResult",
    "ProviderAdapter",
    "TERMINAL_PROVIDER_STATUSES",
    "build_input_id",
    "validate_chunk_data",
]
