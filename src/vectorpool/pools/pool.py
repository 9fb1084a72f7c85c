from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from vectorpool.pools.capabilities import Chunker, EligibilityPredicate, EmbedDocs, EmbedQuery
from vectorpool.pools.provider import ProviderAdapter


@dataclass
class CollectionConfig:
    """How one source collection feeds a knowledge pool."""

    to_knowledge_pool: Chunker
    should_embed: Optional[EligibilityPredicate] = None

    def accepts(self, doc: Mapping[str, Any]) -> bool:
        if self.should_embed is None:
            return True
        return bool(self.should_embed(doc))


@dataclass
class KnowledgePool:
    """
    A named destination for embeddings.

    Attributes:
        name: Pool name, the `pool` column of every embedding row
        collections: Source collection name -> CollectionConfig
        embedding_version: Tag stamped on rows; bumping it re-embeds everything
        dims: Vector dimensionality (checked on write when set)
        provider: Batch provider adapter; bulk runs need one
        embed_docs: Realtime embedding of many texts
        embed_query: Query embedding for search
        extension_fields: Extra chunk keys exposed as search filters/results
    """

    name: str
    collections: dict[str, CollectionConfig]
    embedding_version: str
    dims: Optional[int] = None
    provider: Optional[ProviderAdapter] = None
    embed_docs: Optional[EmbedDocs] = None
    embed_query: Optional[EmbedQuery] = None
    extension_fields: list[str] = field(default_factory=list)

    def get_collection(self, collection: str) -> Optional[CollectionConfig]:
        return self.collections.get(collection)

    @property
    def supports_bulk(self) -> bool:
        return self.provider is not None

    @property
    def supports_realtime(self) -> bool:
        return self.embed_docs is not None
