from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from vectorpool.db.models import TimestampMixin


class Embedding(TimestampMixin, SQLModel, table=True):
    """One embedded chunk of a source document in a knowledge pool."""

    __tablename__ = "embeddings"
    __table_args__ = (
        UniqueConstraint(
            "pool", "source_collection", "doc_id", "chunk_index", name="uq_embeddings_chunk"
        ),
        Index("ix_embeddings_pool_doc", "pool", "source_collection", "doc_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    pool: str = Field(index=True)
    source_collection: str
    doc_id: str
    chunk_index: int
    chunk_text: str = Field(default="")
    embedding_version: str = Field(index=True)
    embedding: bytes
    extension_fields: Optional[dict] = Field(sa_column=Column(JSON), default=None)
