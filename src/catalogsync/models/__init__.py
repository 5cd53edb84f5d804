"""SQLModel tables for datasources, sync jobs and the collection registry."""

from catalogsync.models.collections import CollectionRecord
from catalogsync.models.datasources import (
    Datasource,
    DatasourceStatus,
    SourceKind,
    WatermarkKind,
)
from catalogsync.models.jobs import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ActiveJobSlot,
    JobStatus,
    JobType,
    SyncError,
    SyncJob,
)

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "ActiveJobSlot",
    "CollectionRecord",
    "Datasource",
    "DatasourceStatus",
    "JobStatus",
    "JobType",
    "SourceKind",
    "SyncError",
    "SyncJob",
    "WatermarkKind",
]
