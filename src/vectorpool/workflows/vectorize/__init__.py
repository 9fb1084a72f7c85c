"""Realtime vectorize path and document delete cleanup."""

from vectorpool.workflows.vectorize.realtime import (
    RealtimeNotConfiguredError,
    delete_document_embeddings,
    pools_for_collection,
    vectorize_document,
)

__all__ = [
    "RealtimeNotConfiguredError",
    "delete_document_embeddings",
    "pools_for_collection",
    "vectorize_document",
]
