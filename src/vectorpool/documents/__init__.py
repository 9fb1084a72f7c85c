"""Source documents - the collections knowledge pools embed from."""

from vectorpool.documents.models import SourceDocument
from vectorpool.documents.store import DocumentStore

__all__ = ["DocumentStore", "SourceDocument"]
