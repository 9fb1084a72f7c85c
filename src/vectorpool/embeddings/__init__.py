"""Embedding rows: storage, replace-set writes and similarity search."""

from vectorpool.embeddings.models import Embedding
from vectorpool.embeddings.search import InvalidFilterError, matches_where, rank_rows
from vectorpool.embeddings.store import (
    DimensionMismatchError,
    EmbeddingRowData,
    EmbeddingStore,
    delete_chunks,
    upsert_chunks,
)

__all__ = [
    "DimensionMismatchError",
    "Embedding",
    "EmbeddingRowData",
    "EmbeddingStore",
    "InvalidFilterError",
    "delete_chunks",
    "matches_where",
    "rank_rows",
    "upsert_chunks",
]
