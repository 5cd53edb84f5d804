"""SyncScheduler — cron-driven syncs and job housekeeping."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from croniter import croniter

from catalogsync.exceptions import ConflictError, InvalidStateError, NotFoundError
from catalogsync.models.datasources import DatasourceStatus
from catalogsync.models.jobs import JobType

if TYPE_CHECKING:
    from collections.abc import Callable

    from catalogsync.config import SyncSettings
    from catalogsync.datasources import DatasourceRepository
    from catalogsync.models.jobs import SyncJob
    from catalogsync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

STALE_JOBS = "stale-jobs"
PURGE_JOBS = "purge-jobs"


def _now() -> datetime:
    return datetime.now(UTC)


def next_fire(expression: str, after: datetime) -> datetime:
    """First time strictly after *after* at which *expression* fires."""
    fire: datetime = croniter(expression, after).get_next(datetime)
    return fire


@dataclass(slots=True)
class _Entry:
    name: str
    expression: str
    next_run: datetime
    datasource_id: str | None = None
    last_run: datetime | None = None


@dataclass(frozen=True, slots=True)
class ScheduleInfo:
    """A registered cron and when it fires next."""

    name: str
    expression: str
    next_run: datetime
    last_run: datetime | None = None
    datasource_id: str | None = None


class SyncScheduler:
    """Starts full syncs from each active datasource's ``sync_schedule``.

    Every :meth:`tick` re-reads the active datasources, so schedules added,
    changed, paused or removed take effect on the next check.  A datasource's
    cron counts from its last completed sync (or its creation), so firings
    missed while no scheduler was running start one sync on the first
    check, as does a cron that fired several times between checks.  The stale-job
    sweep and the finished-job purge run on their own crons from
    :class:`~catalogsync.config.SyncSettings`.

    A scheduled sync that finds a job already active for its datasource is
    skipped and logged; the next firing tries again.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        datasources: DatasourceRepository,
        *,
        settings: SyncSettings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._datasources = datasources
        self._settings = settings
        self._clock = clock or _now
        self._entries: dict[str, _Entry] = {}
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Checking
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[SyncJob]:
        """Run every cron due at *now*; return the sync jobs started."""
        now = _as_utc(now or self._clock())
        await self._reload(now)

        started: list[SyncJob] = []
        for entry in list(self._entries.values()):
            if entry.next_run > now:
                continue
            entry.last_run = now
            entry.next_run = next_fire(entry.expression, now)
            if entry.datasource_id is not None:
                job = await self._trigger(entry.datasource_id)
                if job is not None:
                    started.append(job)
            elif entry.name == STALE_JOBS:
                failed = await self._orchestrator.fail_stale_jobs()
                if failed:
                    logger.warning("Marked %d stale sync jobs as failed", failed)
            else:
                purged = await self._orchestrator.purge_finished_jobs(
                    self._settings.job_retention_days
                )
                logger.info("Purged %d finished sync jobs", purged)
        return started

    async def scheduled(self, now: datetime | None = None) -> list[ScheduleInfo]:
        """Pick up schedule changes, then list the crons ordered by next firing."""
        await self._reload(_as_utc(now or self._clock()))
        entries = sorted(self._entries.values(), key=lambda e: (e.next_run, e.name))
        return [
            ScheduleInfo(
                name=e.name,
                expression=e.expression,
                next_run=e.next_run,
                last_run=e.last_run,
                datasource_id=e.datasource_id,
            )
            for e in entries
        ]

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run(self, poll_interval: float | None = None) -> None:
        """Check for due crons every *poll_interval* seconds until cancelled."""
        interval = poll_interval or self._settings.scheduler_poll_interval
        logger.info("Scheduler started, checking every %.0fs", interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler check failed; retrying in %.0fs", interval)
            await asyncio.sleep(interval)

    def start(self, poll_interval: float | None = None) -> None:
        """Run :meth:`run` as a background task.  No-op while already running."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(poll_interval), name="catalogsync-scheduler")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _reload(self, now: datetime) -> None:
        # name -> (cron, datasource id, time the cron counts from)
        wanted: dict[str, tuple[str, str | None, datetime]] = {
            STALE_JOBS: (self._settings.stale_check_schedule, None, now),
            PURGE_JOBS: (self._settings.purge_schedule, None, now),
        }
        for ds in await self._datasources.list(status=DatasourceStatus.ACTIVE):
            if ds.sync_schedule:
                since = _as_utc(ds.last_synced_at or ds.created_at)
                wanted[f"sync-{ds.id}"] = (ds.sync_schedule, ds.id, since)

        for name in set(self._entries) - set(wanted):
            del self._entries[name]
            logger.info("Removed cron %s", name)

        for name, (expression, datasource_id, since) in wanted.items():
            entry = self._entries.get(name)
            if entry is not None and entry.expression == expression:
                continue
            try:
                fire = next_fire(expression, since)
            except (ValueError, KeyError) as exc:
                logger.error("Cannot schedule %s with cron %r: %s", name, expression, exc)
                self._entries.pop(name, None)
                continue
            self._entries[name] = _Entry(
                name=name, expression=expression, next_run=fire, datasource_id=datasource_id
            )
            logger.info("Cron %s set to %r, next run at %s", name, expression, fire.isoformat())

    async def _trigger(self, datasource_id: str) -> SyncJob | None:
        logger.info("Executing scheduled sync for datasource %s", datasource_id)
        try:
            job = await self._orchestrator.trigger_sync(datasource_id, JobType.FULL)
        except ConflictError as exc:
            logger.info("Scheduled sync for datasource %s skipped: %s", datasource_id, exc)
            return None
        except (NotFoundError, InvalidStateError) as exc:
            logger.warning("Scheduled sync for datasource %s not started: %s", datasource_id, exc)
            return None
        return job


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value
