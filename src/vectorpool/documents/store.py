"""
Source document store.

Stands in for the host database's collections: documents are read in pages
ordered by id so a scan over a large collection never loads it whole.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlmodel import Session, func, select

from vectorpool.db import DatabaseClient, managed_session, session_scope, utcnow
from vectorpool.documents.models import SourceDocument

logger = logging.getLogger(__name__)


class DocumentStore:
    """Paged access to source documents held in the plugin database."""

    def __init__(self, client: DatabaseClient):
        self.client = client

    def upsert(self, collection: str, doc_id: str, data: dict) -> SourceDocument:
        """Insert or replace a document, bumping updated_at."""
        with managed_session(self.client) as session:
            doc = session.get(SourceDocument, (collection, str(doc_id)))
            if doc is None:
                doc = SourceDocument(collection=collection, doc_id=str(doc_id), data=data)
            else:
                doc.data = data
                doc.updated_at = utcnow()
            session.add(doc)
            session.flush()
            session.refresh(doc)
            return doc

    def get(self, collection: str, doc_id: str) -> Optional[SourceDocument]:
        with session_scope(self.client) as session:
            return session.get(SourceDocument, (collection, str(doc_id)))

    def delete(self, collection: str, doc_id: str) -> bool:
        with managed_session(self.client) as session:
            doc = session.get(SourceDocument, (collection, str(doc_id)))
            if doc is None:
                return False
            session.delete(doc)
        logger.debug(f"Deleted document {collection}:{doc_id}")
        return True

    def count(self, collection: str) -> int:
        with session_scope(self.client) as session:
            stmt = (
                select(func.count())
                .select_from(SourceDocument)
                .where(SourceDocument.collection == collection)
            )
            return session.exec(stmt).one()

    def fetch_page(
        self,
        session: Session,
        collection: str,
        *,
        after: Optional[str],
        limit: int,
    ) -> list[SourceDocument]:
        """Keyset page: documents with doc_id > `after`, ordered by doc_id."""
        stmt = select(SourceDocument).where(SourceDocument.collection == collection)
        if after is not None:
            stmt = stmt.where(SourceDocument.doc_id > after)
        stmt = stmt.order_by(SourceDocument.doc_id).limit(limit)
        return list(session.exec(stmt).all())
