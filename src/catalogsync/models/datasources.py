"""Datasource model — a relational source feeding one vector collection."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class SourceKind(Enum):
    """Relational engines a datasource can read from."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MSSQL = "mssql"
    SQLITE = "sqlite"


class WatermarkKind(Enum):
    """Type of the change marker column."""

    TIMESTAMP = "timestamp"
    SEQUENCE = "sequence"


class DatasourceStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class Datasource(SQLModel, table=True):
    """A relational source of product rows and where its points go.

    Exactly one of ``table_name`` / ``query`` selects the rows.  A custom
    ``query`` is wrapped as a subquery, so it must expose ``id_field`` and
    ``change_marker_field`` as output columns.

    ``credentials_env`` names an environment variable holding the password
    that is injected into ``connection_url`` at connect time; the URL itself
    never needs to contain a secret.

    ``sync_schedule`` is a five-field cron expression; while the datasource
    is active, :class:`~catalogsync.scheduler.SyncScheduler` starts a full
    sync each time it fires.
    """

    __tablename__ = "catalog_datasources"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str = Field(default="")
    kind: str = Field(default=SourceKind.POSTGRESQL.value)
    connection_url: str
    credentials_env: str | None = Field(default=None)
    table_name: str | None = Field(default=None)
    schema_name: str | None = Field(default=None)
    query: str | None = Field(default=None)
    id_field: str = Field(default="id")
    change_marker_field: str = Field(default="updated_at")
    watermark_kind: str = Field(default=WatermarkKind.TIMESTAMP.value)
    watermark: str | None = Field(default=None)
    embedding_fields: list[str] = Field(default_factory=list, sa_type=JSON)
    field_mapping: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    collection_name: str
    batch_size: int | None = Field(default=None)
    batch_delay_ms: int | None = Field(default=None)
    webhook_secret: str | None = Field(default=None)
    sync_schedule: str | None = Field(default=None)
    status: str = Field(default=DatasourceStatus.ACTIVE.value)
    last_synced_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
