"""SyncSettings — tunables for batching, concurrency, retries and thresholds."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

from croniter import croniter

from catalogsync.search.types import Distance, HnswParams

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "CATALOGSYNC_"


@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Engine-wide settings.

    Per-datasource overrides (``batch_size``, ``batch_delay_ms``) live on the
    :class:`~catalogsync.models.Datasource` row and win over these defaults.

    Attributes:
        batch_size: Rows per batch.
        batch_delay: Seconds to sleep between batches.
        embed_concurrency: Embedding calls in flight per batch.
        query_concurrency: Neighbor queries / classifier calls in flight.
        retry_attempts: Attempts for transient I/O failures (1 disables retries).
        retry_min_wait: Minimum backoff between attempts, in seconds.
        retry_max_wait: Maximum backoff between attempts, in seconds.
        default_distance: Distance metric for collections created by a sync.
        hnsw_m: HNSW ``m`` for collections created by a sync.
        hnsw_ef_construct: HNSW ``ef_construct`` for collections created by a sync.
        duplicate_threshold: Default similarity threshold for duplicate detection.
        validation_threshold: Default similarity threshold for existence validation.
        exact_match_threshold: Score at or above which a validation match is exact.
        neighbor_limit: Neighbors fetched per point during duplicate detection.
        stale_job_timeout: Seconds without progress after which an active job is stale.
        max_webhook_records: Maximum record ids accepted by one webhook sync.
        scheduler_poll_interval: Seconds between scheduler checks for due crons.
        stale_check_schedule: Cron for failing stale jobs from the scheduler.
        purge_schedule: Cron for purging old finished jobs from the scheduler.
        job_retention_days: Days finished jobs are kept by the scheduled purge.
    """

    batch_size: int = 100
    batch_delay: float = 0.0
    embed_concurrency: int = 8
    query_concurrency: int = 8
    retry_attempts: int = 3
    retry_min_wait: float = 0.5
    retry_max_wait: float = 8.0
    default_distance: Distance = Distance.COSINE
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    duplicate_threshold: float = 0.85
    validation_threshold: float = 0.90
    exact_match_threshold: float = 0.97
    neighbor_limit: int = 20
    stale_job_timeout: float = 1800.0
    max_webhook_records: int = 500
    scheduler_poll_interval: float = 30.0
    stale_check_schedule: str = "*/5 * * * *"
    purge_schedule: str = "0 2 * * *"
    job_retention_days: int = 30

    def __post_init__(self) -> None:
        if not 1 <= self.batch_size <= 10_000:
            msg = f"batch_size must be between 1 and 10000, got {self.batch_size}"
            raise ValueError(msg)
        for name in ("embed_concurrency", "query_concurrency", "retry_attempts", "neighbor_limit"):
            if getattr(self, name) < 1:
                msg = f"{name} must be at least 1"
                raise ValueError(msg)
        for name in ("duplicate_threshold", "validation_threshold", "exact_match_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                msg = f"{name} must be within [0, 1], got {value}"
                raise ValueError(msg)
        for name in ("stale_check_schedule", "purge_schedule"):
            if not croniter.is_valid(getattr(self, name)):
                msg = f"{name} is not a valid cron expression: {getattr(self, name)!r}"
                raise ValueError(msg)
        if self.scheduler_poll_interval <= 0 or self.job_retention_days < 1:
            msg = "scheduler_poll_interval and job_retention_days must be positive"
            raise ValueError(msg)
        if self.batch_delay < 0 or self.retry_min_wait < 0 or self.retry_max_wait < 0:
            msg = "batch_delay and retry waits must not be negative"
            raise ValueError(msg)

    @property
    def hnsw(self) -> HnswParams:
        """HNSW parameters for collections created by a sync."""
        return HnswParams(m=self.hnsw_m, ef_construct=self.hnsw_ef_construct)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, *, prefix: str = ENV_PREFIX
    ) -> SyncSettings:
        """Build settings from ``CATALOGSYNC_<FIELD>`` environment variables.

        Unset variables keep their defaults, e.g. ``CATALOGSYNC_BATCH_SIZE=250``.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.name == "default_distance":
                kwargs[f.name] = Distance.parse(raw)
            elif isinstance(f.default, str):
                kwargs[f.name] = raw
            elif isinstance(f.default, int):
                kwargs[f.name] = int(raw)
            else:
                kwargs[f.name] = float(raw)
        return cls(**kwargs)
