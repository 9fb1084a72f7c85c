"""
VectorizePlugin - one instance of the embedding plugin.

Owns the database client, the knowledge pools, the task queue and the bulk
embedding components, and registers the task handlers on the queue:

    pool = KnowledgePool(
        name="default",
        collections={"posts": CollectionConfig(to_knowledge_pool=chunk_post)},
        embedding_version="v1",
        provider=MyBatchProvider(),
        embed_docs=embedder.embed_docs,
        embed_query=embedder.embed_query,
    )
    plugin = VectorizePlugin([pool])

    plugin.bulk_embed("default")
    plugin.run_until_idle()
    plugin.search("default", "how do I reset my password?")
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from vectorpool.config import VectorpoolConfig, get_config_or_default
from vectorpool.core.hooks import BulkEmbedHooks, NoopBulkEmbedHooks
from vectorpool.db import DatabaseClient, get_database_client, session_scope
from vectorpool.documents import DocumentStore, SourceDocument
from vectorpool.embeddings import EmbeddingStore, rank_rows
from vectorpool.pools import KnowledgePool
from vectorpool.workflows.bulk_embed import store as bulk_store
from vectorpool.workflows.bulk_embed import (
    POLL_TASK,
    PREPARE_TASK,
    VECTORIZE_TASK,
    BulkEmbedConfig,
    BulkEmbedContext,
    BulkEmbeddingBatch,
    BulkEmbeddingRun,
    BulkEmbedOrchestrator,
    BulkEmbedResult,
    InlineTaskQueue,
    RetryCoordinator,
    RetryOutcome,
    TaskQueue,
)
from vectorpool.workflows.vectorize import (
    delete_document_embeddings,
    pools_for_collection,
    vectorize_document,
)

logger = logging.getLogger(__name__)


class SearchNotConfiguredError(ValueError):
    def __init__(self, pool: str):
        self.pool = pool
        super().__init__(f"Knowledge pool '{pool}' has no embed_query function")


def build_task_queue(config: VectorpoolConfig) -> TaskQueue:
    """Task queue selected by TASK_QUEUE in vectorpool.config."""
    if config.TASK_QUEUE == "dbos":
        from vectorpool.workflows.bulk_embed.dbos_queue import DBOSTaskQueue

        return DBOSTaskQueue()
    return InlineTaskQueue(respect_delays=True)


class VectorizePlugin:
    """
    Args:
        pools: Knowledge pools served by this instance (names must be unique)
        client: Database client (default: from vectorpool.config)
        queue: Task queue (default: TASK_QUEUE from vectorpool.config)
        config: Bulk embedding settings (default: BULK_EMBED.* keys)
        hooks: Run/batch lifecycle callbacks
    """

    def __init__(
        self,
        pools: Iterable[KnowledgePool],
        *,
        client: Optional[DatabaseClient] = None,
        queue: Optional[TaskQueue] = None,
        config: Optional[BulkEmbedConfig] = None,
        hooks: Optional[BulkEmbedHooks] = None,
    ):
        self.pools: dict[str, KnowledgePool] = {}
        for pool in pools:
            if pool.name in self.pools:
                raise ValueError(f"Duplicate knowledge pool name '{pool.name}'")
            self.pools[pool.name] = pool

        if client is None or queue is None:
            project = get_config_or_default()
            client = client or get_database_client(project)
            queue = queue or build_task_queue(project)

        self.client = client
        self.client.init_database()
        self.queue = queue
        self.config = config or BulkEmbedConfig.from_config("bulk_embed")
        self.hooks = hooks or NoopBulkEmbedHooks()

        self.documents = DocumentStore(self.client)
        self.embeddings = EmbeddingStore(self.client)
        self.context = BulkEmbedContext(
            client=self.client,
            pools=self.pools,
            documents=self.documents,
            embeddings=self.embeddings,
            queue=self.queue,
            config=self.config,
            hooks=self.hooks,
        )
        self.orchestrator = BulkEmbedOrchestrator(self.context)
        self.retries = RetryCoordinator(self.context)

        self._register_tasks()
        self.queue.start(self.client)

    def _register_tasks(self) -> None:
        self.queue.register(
            PREPARE_TASK, self.orchestrator.prepare, queue_name=self.config.prepare_queue_name
        )
        self.queue.register(
            POLL_TASK, self.orchestrator.poll_or_complete, queue_name=self.config.poll_queue_name
        )
        self.queue.register(
            VECTORIZE_TASK, self.vectorize, queue_name=self.config.realtime_queue_name
        )

    # ------------------------------------------------------------------
    # Bulk embedding
    # ------------------------------------------------------------------

    def bulk_embed(self, pool: str) -> BulkEmbedResult:
        """Start a bulk embedding run for `pool` (see BulkEmbedOrchestrator.start)."""
        return self.orchestrator.start(pool)

    def retry_failed_batch(self, batch_id: int) -> RetryOutcome:
        return self.retries.retry(batch_id)

    def resume_run(self, run_id: int) -> dict[str, Any]:
        return self.orchestrator.resume(run_id)

    def get_run(self, run_id: int) -> Optional[BulkEmbeddingRun]:
        return bulk_store.get_run(self.client, run_id)

    def list_runs(self, pool: Optional[str] = None, *, limit: int = 20) -> list[BulkEmbeddingRun]:
        return bulk_store.list_runs(self.client, pool=pool, limit=limit)

    def list_batches(self, run_id: int) -> list[BulkEmbeddingBatch]:
        with session_scope(self.client) as session:
            return bulk_store.list_batches(session, run_id)

    def run_until_idle(self, max_tasks: int = 1000) -> int:
        """Drain an InlineTaskQueue. Other queues run their own workers."""
        if not isinstance(self.queue, InlineTaskQueue):
            return 0
        return self.queue.run_until_idle(max_tasks=max_tasks)

    # ------------------------------------------------------------------
    # Documents and realtime embedding
    # ------------------------------------------------------------------

    def upsert_document(
        self, collection: str, doc_id: str, data: Mapping[str, Any], *, embed: bool = True
    ) -> SourceDocument:
        """Save a source document and queue realtime embedding for it."""
        doc = self.documents.upsert(collection, doc_id, dict(data))
        targets = pools_for_collection(self.pools.values(), collection)
        if embed and any(pool.supports_realtime for pool in targets):
            self.queue_embed(collection, doc.doc_id)
        return doc

    def queue_embed(self, collection: str, doc_id: str) -> None:
        self.queue.enqueue(VECTORIZE_TASK, {"collection": collection, "doc_id": str(doc_id)})

    def vectorize(self, collection: str, doc_id: str) -> dict[str, int]:
        """Embed a stored document into every realtime pool that includes its collection.

        Returns rows written per pool.
        """
        source = self.documents.get(collection, doc_id)
        if source is None:
            logger.warning(f"Document {collection}:{doc_id} not found; nothing to vectorize")
            return {}
        doc = source.as_document()
        written = {}
        for pool in pools_for_collection(self.pools.values(), collection):
            if not pool.supports_realtime:
                continue
            written[pool.name] = vectorize_document(
                pool, collection, doc, embeddings=self.embeddings
            )
        return written

    def delete_document(self, collection: str, doc_id: str) -> dict[str, int]:
        """Delete a source document with its embeddings and pending bulk inputs."""
        self.documents.delete(collection, doc_id)
        return delete_document_embeddings(
            self.client,
            self.pools.values(),
            collection,
            doc_id,
            embeddings=self.embeddings,
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        pool: str,
        query: str,
        *,
        limit: int = 10,
        where: Optional[Mapping[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Rank the pool's chunks by cosine similarity to `query`."""
        knowledge_pool = self.context.get_pool(pool)
        if knowledge_pool.embed_query is None:
            raise SearchNotConfiguredError(pool)
        query_embedding = knowledge_pool.embed_query(query)
        rows = self.embeddings.list_rows(pool)
        return rank_rows(rows, query_embedding, limit=limit, where=where)
