from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from vectorpool.db.models import TimestampMixin


class SourceDocument(TimestampMixin, SQLModel, table=True):
    """A document in one of the host's source collections."""

    __tablename__ = "source_documents"

    collection: str = Field(primary_key=True)
    doc_id: str = Field(primary_key=True)
    data: Optional[dict] = Field(sa_column=Column(JSON), default=None)

    def as_document(self) -> dict:
        """The shape handed to chunkers and predicates: data plus id/timestamps."""
        doc = dict(self.data or {})
        doc["id"] = self.doc_id
        doc.setdefault("createdAt", self.created_at)
        doc.setdefault("updatedAt", self.updated_at)
        return doc
