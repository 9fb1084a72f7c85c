from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from vectorpool.db.models import TimestampMixin


class RunStatus(str, Enum):
    """Lifecycle of a bulk embedding run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELED)


class BatchStatus(str, Enum):
    """Lifecycle of one provider batch. RETRIED marks a replaced batch."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    RETRIED = "retried"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BatchStatus.SUCCEEDED,
            BatchStatus.FAILED,
            BatchStatus.CANCELED,
            BatchStatus.RETRIED,
        )


ACTIVE_RUN_STATUSES = (RunStatus.QUEUED, RunStatus.RUNNING)


class BulkEmbeddingRun(TimestampMixin, SQLModel, table=True):
    """One bulk embedding attempt for one knowledge pool."""

    __tablename__ = "bulk_embedding_runs"
    __table_args__ = (Index("ix_bulk_embedding_runs_pool_status", "pool", "status"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    pool: str = Field(index=True)
    embedding_version: str
    status: RunStatus = Field(default=RunStatus.QUEUED)
    # Pool name while queued/running, NULL once terminal: unique, so at most
    # one active run per pool can exist.
    active_pool: Optional[str] = Field(default=None, unique=True)
    total_batches: int = Field(default=0)
    inputs: int = Field(default=0)
    succeeded: int = Field(default=0)
    failed: int = Field(default=0)
    submitted_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    error: Optional[str] = Field(default=None)
    failed_chunk_data: Optional[list] = Field(sa_column=Column(JSON), default=None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pool": self.pool,
            "embedding_version": self.embedding_version,
            "status": RunStatus(self.status).value,
            "total_batches": self.total_batches,
            "inputs": self.inputs,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "failed_chunk_data": self.failed_chunk_data,
        }


class BulkEmbeddingBatch(TimestampMixin, SQLModel, table=True):
    """One provider-level submission within a run. Never deleted."""

    __tablename__ = "bulk_embedding_batches"
    __table_args__ = (
        UniqueConstraint("run_id", "batch_index", name="uq_bulk_embedding_batches_index"),
        Index("ix_bulk_embedding_batches_run_status", "run_id", "status"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: int = Field(foreign_key="bulk_embedding_runs.id", index=True)
    batch_index: int
    provider_batch_id: str = Field(index=True)
    input_file_ref: Optional[str] = Field(default=None)
    status: BatchStatus = Field(default=BatchStatus.QUEUED)
    input_count: int = Field(default=0)
    succeeded_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    submitted_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    error: Optional[str] = Field(default=None)
    retried_by_batch_id: Optional[int] = Field(default=None)
    failed_chunk_data: Optional[list] = Field(sa_column=Column(JSON), default=None)

    # Poll claim
    lease_token: Optional[str] = Field(default=None)
    lease_expires_at: Optional[datetime] = Field(default=None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "batch_index": self.batch_index,
            "provider_batch_id": self.provider_batch_id,
            "input_file_ref": self.input_file_ref,
            "status": BatchStatus(self.status).value,
            "input_count": self.input_count,
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "retried_by_batch_id": self.retried_by_batch_id,
        }


class BulkEmbeddingInputMetadata(SQLModel, table=True):
    """One submitted chunk, kept until its run succeeds."""

    __tablename__ = "bulk_embedding_input_metadata"
    __table_args__ = (
        UniqueConstraint("run_id", "input_id", name="uq_bulk_embedding_input_metadata_input"),
        Index("ix_bulk_embedding_input_metadata_doc", "run_id", "source_collection", "doc_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: int = Field(foreign_key="bulk_embedding_runs.id", index=True)
    batch_id: int = Field(foreign_key="bulk_embedding_batches.id", index=True)
    input_id: str
    text: str
    source_collection: str
    doc_id: str
    chunk_index: int
    embedding_version: str
    extension_fields: Optional[dict] = Field(sa_column=Column(JSON), default=None)
    # Embedding held back while the document's other chunks sit in batches
    # that have not succeeded yet
    staged_embedding: Optional[list] = Field(
        sa_column=Column(JSON(none_as_null=True)), default=None
    )
