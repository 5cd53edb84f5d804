"""SyncJob, SyncError and ActiveJobSlot models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class JobType(Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    WEBHOOK = "webhook"


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES: frozenset[str] = frozenset({JobStatus.PENDING.value, JobStatus.RUNNING.value})
TERMINAL_STATUSES: frozenset[str] = frozenset(
    {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}
)


def _now() -> datetime:
    return datetime.now(UTC)


class SyncJob(SQLModel, table=True):
    """One run of a datasource through the sync pipeline.

    Mutated only by the orchestrator; never changes once ``status`` is terminal.
    """

    __tablename__ = "catalog_sync_jobs"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    datasource_id: str = Field(index=True, foreign_key="catalog_datasources.id")
    type: str = Field(default=JobType.FULL.value)
    status: str = Field(default=JobStatus.PENDING.value, index=True)
    force_full: bool = Field(default=False)
    record_ids: list[str] | None = Field(default=None, sa_type=JSON)
    total_records: int = Field(default=0)
    processed_records: int = Field(default=0)
    successful_records: int = Field(default=0)
    failed_records: int = Field(default=0)
    cancel_requested: bool = Field(default=False)
    error_message: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))
    started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SyncError(SQLModel, table=True):
    """A row that could not be embedded or upserted.  Append-only."""

    __tablename__ = "catalog_sync_errors"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    job_id: str = Field(index=True, foreign_key="catalog_sync_jobs.id")
    record_id: str | None = Field(default=None)
    error_type: str = Field(default="")
    error_message: str = Field(default="")
    created_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))


class ActiveJobSlot(SQLModel, table=True):
    """The single active-job slot of a datasource.

    The primary key on ``datasource_id`` is what rejects a second concurrent
    trigger, across every orchestrator sharing the database.
    """

    __tablename__ = "catalog_active_jobs"

    datasource_id: str = Field(primary_key=True)
    job_id: str = Field(index=True)
    acquired_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))
