from __future__ import annotations

from dataclasses import dataclass, field

from vectorpool.core.errors import BulkEmbedNotConfiguredError, KnowledgePoolNotFoundError
from vectorpool.core.hooks import BulkEmbedHooks, NoopBulkEmbedHooks
from vectorpool.db import DatabaseClient
from vectorpool.documents import DocumentStore
from vectorpool.embeddings import EmbeddingStore
from vectorpool.pools import KnowledgePool
from vectorpool.workflows.bulk_embed.config import BulkEmbedConfig
from vectorpool.workflows.bulk_embed.tasks import TaskQueue


@dataclass
class BulkEmbedContext:
    """Everything one plugin instance's bulk pipeline touches, passed explicitly."""

    client: DatabaseClient
    pools: dict[str, KnowledgePool]
    documents: DocumentStore
    embeddings: EmbeddingStore
    queue: TaskQueue
    config: BulkEmbedConfig = field(default_factory=BulkEmbedConfig)
    hooks: BulkEmbedHooks = field(default_factory=NoopBulkEmbedHooks)

    def get_pool(self, name: str) -> KnowledgePool:
        pool = self.pools.get(name)
        if pool is None:
            raise KnowledgePoolNotFoundError(name)
        return pool

    def get_bulk_pool(self, name: str) -> KnowledgePool:
        pool = self.get_pool(name)
        if pool.provider is None:
            raise BulkEmbedNotConfiguredError(name)
        return pool
