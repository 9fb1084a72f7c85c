"""Vectorpool - knowledge pool embeddings with bulk provider batches.

This module provides:
- Config: Project configuration (VectorpoolConfig) and BULK_EMBED.* settings
- Pools: KnowledgePool, collection chunkers and the ProviderAdapter contract
- Workflows: Bulk embedding runs, retries and the realtime vectorize path
- Plugin: VectorizePlugin, which wires all of the above to a task queue
"""

from vectorpool.config import VectorpoolConfig as VectorpoolConfig
from vectorpool.config import get_config_or_default as get_config_or_default
from vectorpool.config import load_config as load_config
from vectorpool.core import BulkEmbedError as BulkEmbedError
from vectorpool.core import BulkEmbedHooks as BulkEmbedHooks
from vectorpool.core import ChunkValidationError as ChunkValidationError
from vectorpool.core import FailedChunkRef as FailedChunkRef
from vectorpool.core import LiteLLMEmbedder as LiteLLMEmbedder
from vectorpool.core import VectorpoolError as VectorpoolError
from vectorpool.plugin import VectorizePlugin as VectorizePlugin
from vectorpool.pools import BatchSubmission as BatchSubmission
from vectorpool.pools import BulkEmbeddingInput as BulkEmbeddingInput
from vectorpool.pools import BulkEmbeddingOutput as BulkEmbeddingOutput
from vectorpool.pools import CollectionConfig as CollectionConfig
from vectorpool.pools import KnowledgePool as KnowledgePool
from vectorpool.pools import PollResult as PollResult
from vectorpool.pools import ProviderAdapter as ProviderAdapter
from vectorpool.workflows.bulk_embed import BulkEmbedResult as BulkEmbedResult
from vectorpool.workflows.bulk_embed import RetryError as RetryError
from vectorpool.workflows.bulk_embed import RetryResult as RetryResult

__version__ = "0.1.0"
