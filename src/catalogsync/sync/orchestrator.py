"""SyncOrchestrator — drives sync jobs from trigger to terminal state."""

from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from catalogsync._retry import retry_transient
from catalogsync.config import SyncSettings
from catalogsync.events import EventBus, EventType, SyncEvent
from catalogsync.exceptions import (
    AuthenticationError,
    ConflictError,
    DimensionMismatchError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PointRejectedError,
    RowError,
    SystemicError,
)
from catalogsync.models.datasources import Datasource, DatasourceStatus
from catalogsync.models.jobs import (
    ACTIVE_STATUSES,
    ActiveJobSlot,
    JobStatus,
    JobType,
    SyncError,
    SyncJob,
)
from catalogsync.search.types import VectorEntry
from catalogsync.source.watermark import Marker, advance, format_watermark, parse_watermark
from catalogsync.sync.payloads import PreparedRow, point_id_for, prepare_row, record_id_of

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from catalogsync.registry import CollectionRegistry
    from catalogsync.search.protocols import EmbeddingProvider, VectorStore
    from catalogsync.source.reader import Row, SourceReader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Progress:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    batches: int = 0


@dataclass(slots=True)
class _BatchResult:
    processed: int
    succeeded: int = 0
    new_points: int = 0
    removed_points: int = 0
    failures: list[tuple[str | None, Exception]] = field(default_factory=list)
    max_marker: Marker | None = None


@dataclass(frozen=True, slots=True)
class _RunResult:
    cancelled: bool
    max_marker: Marker | None = None


def _now() -> datetime:
    return datetime.now(UTC)


class SyncOrchestrator:
    """Runs sync jobs: source rows → embeddings → points, with progress and per-row errors.

    Each trigger creates a :class:`SyncJob` in ``pending`` together with the
    datasource's :class:`ActiveJobSlot` in one transaction and returns at
    once; the job runs as an :mod:`asyncio` task.  Rows are read in batches
    in source order.  Within a batch embeddings run concurrently (bounded by
    ``embed_concurrency``) and the points are written with one upsert call,
    falling back to per-point upserts when the store rejects the batch.

    Row-level failures become :class:`SyncError` rows and never abort the
    job.  :class:`SystemicError` aborts it as ``failed``.  Cancellation is
    cooperative: the flag is checked before each batch read, so a batch in
    flight is always fully embedded, written and counted.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        *,
        source_reader: SourceReader,
        embedding_provider: EmbeddingProvider,
        store: VectorStore,
        registry: CollectionRegistry,
        settings: SyncSettings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._source = source_reader
        self._embedding = embedding_provider
        self._store = store
        self._registry = registry
        self._settings = settings or SyncSettings()
        self._events = event_bus or EventBus()
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._events

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def trigger_sync(
        self,
        datasource_id: str,
        job_type: JobType | str = JobType.FULL,
        *,
        force_full: bool = False,
        record_ids: list[str] | None = None,
    ) -> SyncJob:
        """Create a job for *datasource_id* and start it in the background.

        Raises:
            NotFoundError: the datasource does not exist.
            InvalidStateError: the datasource is paused.
            InvalidRequestError: bad ``record_ids`` for the job type.
            ConflictError: the datasource already has a pending or running job.
        """
        job_type = JobType(job_type)
        ids: list[str] | None = None
        if job_type == JobType.WEBHOOK:
            ids = list(dict.fromkeys(str(r).strip() for r in record_ids or [] if str(r).strip()))
            if not ids:
                msg = "A webhook sync needs at least one record id"
                raise InvalidRequestError(msg)
            if len(ids) > self._settings.max_webhook_records:
                msg = (
                    f"A webhook sync accepts at most {self._settings.max_webhook_records} "
                    f"record ids, got {len(ids)}"
                )
                raise InvalidRequestError(msg)
        elif record_ids:
            msg = "record_ids only apply to webhook syncs"
            raise InvalidRequestError(msg)

        job = SyncJob(
            datasource_id=datasource_id,
            type=job_type.value,
            force_full=force_full,
            record_ids=ids,
        )
        async with self._session_factory() as session:
            ds = await session.get(Datasource, datasource_id)
            if ds is None:
                msg = f"Datasource {datasource_id!r} not found"
                raise NotFoundError(msg)
            if ds.status == DatasourceStatus.PAUSED.value:
                msg = f"Datasource {ds.name!r} is paused"
                raise InvalidStateError(msg)
            session.add(job)
            session.add(ActiveJobSlot(datasource_id=datasource_id, job_id=job.id))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"Datasource {ds.name!r} already has an active sync job"
                raise ConflictError(msg) from exc
            await session.refresh(job)

        logger.info("Queued %s sync %s for datasource %s", job_type.value, job.id, ds.name)
        self._tasks[job.id] = asyncio.create_task(self._run(job.id), name=f"sync-job-{job.id}")
        return job

    async def trigger_webhook_sync(
        self, datasource_id: str, record_ids: list[str], *, secret: str | None
    ) -> SyncJob:
        """Check the datasource's shared secret, then trigger a webhook sync.

        Raises:
            AuthenticationError: webhooks are disabled for the datasource or
                *secret* does not match.
        """
        async with self._session_factory() as session:
            ds = await session.get(Datasource, datasource_id)
        if ds is None:
            msg = f"Datasource {datasource_id!r} not found"
            raise NotFoundError(msg)
        if not ds.webhook_secret:
            msg = f"Webhooks are not enabled for datasource {ds.name!r}"
            raise AuthenticationError(msg)
        if secret is None or not hmac.compare_digest(
            secret.encode("utf-8"), ds.webhook_secret.encode("utf-8")
        ):
            msg = f"Invalid webhook secret for datasource {ds.name!r}"
            raise AuthenticationError(msg)
        return await self.trigger_sync(datasource_id, JobType.WEBHOOK, record_ids=record_ids)

    async def retry_errors(self, job_id: str) -> SyncJob:
        """Trigger a webhook sync for the records that failed in *job_id*."""
        job = await self.get_job(job_id)
        errors = await self.get_job_errors(job_id)
        record_ids = list(dict.fromkeys(e.record_id for e in errors if e.record_id))
        if not record_ids:
            msg = f"Job {job_id!r} has no failed records to retry"
            raise InvalidRequestError(msg)
        return await self.trigger_sync(job.datasource_id, JobType.WEBHOOK, record_ids=record_ids)

    # ------------------------------------------------------------------
    # Job control and queries
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: str) -> SyncJob:
        """Ask a pending or running job to stop at its next batch boundary.

        Raises:
            NotFoundError: the job does not exist.
            InvalidStateError: the job already reached a terminal status.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.status.in_(sorted(ACTIVE_STATUSES)))
                .values(cancel_requested=True, updated_at=_now())
            )
            await session.commit()
        job = await self.get_job(job_id)
        if result.rowcount == 0:
            msg = f"Job {job_id!r} is {job.status}; only pending or running jobs can be cancelled"
            raise InvalidStateError(msg)
        logger.info("Cancellation requested for job %s", job_id)
        return job

    async def get_job(self, job_id: str) -> SyncJob:
        async with self._session_factory() as session:
            job = await session.get(SyncJob, job_id)
        if job is None:
            msg = f"Sync job {job_id!r} not found"
            raise NotFoundError(msg)
        return job

    async def list_jobs(
        self,
        *,
        datasource_id: str | None = None,
        status: JobStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SyncJob]:
        """Return jobs, newest first."""
        stmt = select(SyncJob).order_by(SyncJob.created_at.desc(), SyncJob.id)
        if datasource_id is not None:
            stmt = stmt.where(SyncJob.datasource_id == datasource_id)
        if status is not None:
            stmt = stmt.where(SyncJob.status == JobStatus(status).value)
        stmt = stmt.limit(limit).offset(offset)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_job_errors(self, job_id: str, *, limit: int | None = None) -> list[SyncError]:
        """Return the per-row errors of *job_id* in the order they were recorded."""
        await self.get_job(job_id)
        stmt = (
            select(SyncError)
            .where(SyncError.job_id == job_id)
            .order_by(SyncError.created_at, SyncError.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def wait_for(self, job_id: str, timeout: float | None = None) -> SyncJob:
        """Wait until this instance's task for *job_id* is done and return the job row.

        A timeout leaves the job running.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_job(job_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def fail_stale_jobs(self, older_than: float | None = None) -> int:
        """Fail active jobs with no progress for *older_than* seconds and free their slots.

        Jobs owned by a live task of this instance are left alone.
        """
        seconds = older_than if older_than is not None else self._settings.stale_job_timeout
        cutoff = _now() - timedelta(seconds=seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJob.id).where(
                    SyncJob.status.in_(sorted(ACTIVE_STATUSES)), SyncJob.updated_at < cutoff
                )
            )
            stale = [job_id for job_id in result.scalars().all() if job_id not in self._tasks]

        for job_id in stale:
            await self._finish(
                job_id,
                JobStatus.FAILED,
                message=f"No progress for {int(seconds)} seconds; marked failed",
            )
        if stale:
            logger.warning("Marked %d stale sync jobs as failed", len(stale))
        return len(stale)

    async def purge_finished_jobs(self, days_to_keep: int = 30) -> int:
        """Delete completed and cancelled jobs (and their errors) older than *days_to_keep*."""
        cutoff = _now() - timedelta(days=days_to_keep)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJob.id).where(
                    SyncJob.status.in_([JobStatus.COMPLETED.value, JobStatus.CANCELLED.value]),
                    SyncJob.completed_at < cutoff,
                )
            )
            job_ids = list(result.scalars().all())
            if job_ids:
                await session.execute(delete(SyncError).where(SyncError.job_id.in_(job_ids)))
                await session.execute(delete(SyncJob).where(SyncJob.id.in_(job_ids)))
                await session.commit()
        if job_ids:
            logger.info("Purged %d finished sync jobs", len(job_ids))
        return len(job_ids)

    async def close(self) -> None:
        """Request cancellation of every job this instance runs and wait for them."""
        tasks = dict(self._tasks)
        for job_id in tasks:
            try:
                await self.cancel_job(job_id)
            except InvalidStateError:
                pass
        if tasks:
            await asyncio.gather(*tasks.values(), return_exceptions=True)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run(self, job_id: str) -> None:
        try:
            await self._execute(job_id)
        except asyncio.CancelledError:
            await self._finish(job_id, JobStatus.CANCELLED, message="Job task was cancelled")
            raise
        except Exception as exc:
            # A failed terminal write still has to fail the job and free its slot.
            logger.exception("Sync job %s could not be finalized", job_id)
            await self._finish(job_id, JobStatus.FAILED, message=f"{type(exc).__name__}: {exc}")
        finally:
            self._tasks.pop(job_id, None)

    async def _execute(self, job_id: str) -> None:
        job = await self.get_job(job_id)
        if job.cancel_requested:
            await self._finish(job_id, JobStatus.CANCELLED)
            return

        progress = _Progress()
        try:
            async with self._session_factory() as session:
                ds = await session.get(Datasource, job.datasource_id)
            if ds is None:
                msg = f"Datasource {job.datasource_id!r} disappeared"
                raise NotFoundError(msg)

            await self._mark_running(job_id)
            await self._emit(EventType.JOB_STARTED, job, progress)
            logger.info("Sync job %s (%s) started for %s", job_id, job.type, ds.name)

            vector_size = self._embedding.dimensions
            await self._registry.ensure_collection(
                ds.collection_name,
                vector_size,
                self._settings.default_distance,
                self._settings.hnsw,
            )
            if job.type == JobType.WEBHOOK.value:
                outcome = await self._run_records(job, ds, vector_size, progress)
            else:
                outcome = await self._run_scan(job, ds, vector_size, progress)
        except SystemicError as exc:
            logger.error("Sync job %s failed: %s", job_id, exc)
            await self._finish(job_id, JobStatus.FAILED, message=str(exc), progress=progress)
            return
        except Exception as exc:
            logger.exception("Sync job %s crashed", job_id)
            await self._finish(
                job_id,
                JobStatus.FAILED,
                message=f"{type(exc).__name__}: {exc}",
                progress=progress,
            )
            return

        if outcome.cancelled:
            logger.info("Sync job %s cancelled after %d batches", job_id, progress.batches)
            await self._finish(job_id, JobStatus.CANCELLED, progress=progress)
            return

        logger.info(
            "Sync job %s completed: %d processed, %d successful, %d failed",
            job_id,
            progress.processed,
            progress.successful,
            progress.failed,
        )
        await self._finish(
            job_id, JobStatus.COMPLETED, watermark=outcome.max_marker, progress=progress
        )

    async def _run_scan(
        self, job: SyncJob, ds: Datasource, vector_size: int, progress: _Progress
    ) -> _RunResult:
        """Full or incremental: page through the source in change-marker order."""
        watermark: Marker | None = None
        if job.type == JobType.INCREMENTAL.value and not job.force_full:
            watermark = parse_watermark(ds.watermark_kind, ds.watermark)

        total = await retry_transient(
            self._settings, self._source.count_rows, ds, watermark=watermark
        )
        await self._set_total(job.id, total)

        batch_size = ds.batch_size or self._settings.batch_size
        offset = 0
        max_marker: Marker | None = None
        while True:
            if await self._cancel_requested(job.id):
                return _RunResult(cancelled=True, max_marker=max_marker)

            rows = await retry_transient(
                self._settings,
                self._source.read_rows,
                ds,
                watermark=watermark,
                limit=batch_size,
                offset=offset,
            )
            if not rows:
                break

            result = await self._process_batch(ds, rows, vector_size, with_markers=True)
            max_marker = advance(max_marker, result.max_marker)
            await self._record_batch(job, ds, result, progress)

            if len(rows) < batch_size:
                break
            offset += len(rows)
            await self._pause(ds)

        return _RunResult(cancelled=False, max_marker=max_marker)

    async def _run_records(
        self, job: SyncJob, ds: Datasource, vector_size: int, progress: _Progress
    ) -> _RunResult:
        """Webhook: re-read the requested records; drop points of records gone from the source."""
        record_ids = list(job.record_ids or [])
        await self._set_total(job.id, len(record_ids))

        batch_size = ds.batch_size or self._settings.batch_size
        for start in range(0, len(record_ids), batch_size):
            if await self._cancel_requested(job.id):
                return _RunResult(cancelled=True)

            chunk = record_ids[start : start + batch_size]
            rows = await retry_transient(self._settings, self._source.read_records, ds, chunk)

            found: set[str] = set()
            for row in rows:
                try:
                    found.add(record_id_of(ds, row))
                except RowError:
                    continue
            missing = [rid for rid in chunk if rid not in found]

            result = await self._process_batch(ds, rows, vector_size, with_markers=False)
            if missing:
                result.removed_points = await self._remove_points(ds, missing)
                result.succeeded += len(missing)
            result.processed = len(rows) + len(missing)
            await self._record_batch(job, ds, result, progress)

            if start + batch_size < len(record_ids):
                await self._pause(ds)

        return _RunResult(cancelled=False)

    async def _process_batch(
        self,
        ds: Datasource,
        rows: list[Row],
        vector_size: int,
        *,
        with_markers: bool,
    ) -> _BatchResult:
        """Embed and upsert one batch; row failures are collected, systemic ones raised."""
        result = _BatchResult(processed=len(rows))

        prepared: list[PreparedRow] = []
        for row in rows:
            try:
                marker = self._source.change_marker_of(ds, row) if with_markers else None
                prepared.append(prepare_row(ds, row, marker))
            except RowError as exc:
                result.failures.append((_record_id_or_none(ds, row), exc))

        semaphore = asyncio.Semaphore(self._settings.embed_concurrency)

        async def embed_one(item: PreparedRow) -> list[float]:
            async with semaphore:
                return await retry_transient(self._settings, self._embedding.embed, item.text)

        # Let every call in the batch finish before deciding anything
        outcomes = await asyncio.gather(*(embed_one(p) for p in prepared), return_exceptions=True)

        entries: list[VectorEntry] = []
        by_point: dict[str, PreparedRow] = {}
        for item, outcome in zip(prepared, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, SystemicError) or not isinstance(outcome, Exception):
                    raise outcome
                result.failures.append((item.record_id, outcome))
                continue
            if len(outcome) != vector_size:
                msg = (
                    f"Embedding model returned {len(outcome)} dimensions but collection "
                    f"{ds.collection_name!r} stores {vector_size}"
                )
                raise DimensionMismatchError(msg)
            entries.append(
                VectorEntry(id=item.point_id, vector=list(outcome), metadata=item.payload)
            )
            by_point[item.point_id] = item

        if not entries:
            return result

        existing = await retry_transient(
            self._settings, self._store.fetch, ds.collection_name, [e.id for e in entries]
        )
        existed = {e.id for e in existing if e is not None}
        rejected = await self._upsert(ds, entries)

        for entry in entries:
            item = by_point[entry.id]
            if entry.id in rejected:
                result.failures.append((item.record_id, PointRejectedError(rejected[entry.id])))
                continue
            result.succeeded += 1
            if entry.id not in existed:
                result.new_points += 1
            result.max_marker = advance(result.max_marker, item.marker)
        return result

    async def _upsert(self, ds: Datasource, entries: list[VectorEntry]) -> dict[str, str]:
        """Upsert *entries* as one call, or point by point if the batch is refused.

        Returns the ids the store refused, with reasons.  Points written before
        a refusal stay written.
        """
        try:
            upserted = await retry_transient(
                self._settings, self._store.upsert, ds.collection_name, entries
            )
            return _rejections(upserted.failed_ids, upserted.errors)
        except PointRejectedError as exc:
            logger.warning(
                "Store refused a batch of %d points for %s (%s); upserting one by one",
                len(entries),
                ds.collection_name,
                exc,
            )

        rejected: dict[str, str] = {}
        for entry in entries:
            try:
                single = await retry_transient(
                    self._settings, self._store.upsert, ds.collection_name, [entry]
                )
                rejected.update(_rejections(single.failed_ids, single.errors))
            except PointRejectedError as point_exc:
                rejected[entry.id] = str(point_exc)
        return rejected

    async def _remove_points(self, ds: Datasource, record_ids: list[str]) -> int:
        point_ids = [point_id_for(rid) for rid in record_ids]
        existing = await retry_transient(
            self._settings, self._store.fetch, ds.collection_name, point_ids
        )
        present = [e.id for e in existing if e is not None]
        if present:
            await retry_transient(self._settings, self._store.delete, ds.collection_name, present)
            logger.info(
                "Removed %d points of records no longer in %s", len(present), ds.name
            )
        return len(present)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _record_batch(
        self, job: SyncJob, ds: Datasource, result: _BatchResult, progress: _Progress
    ) -> None:
        """Persist errors and counters of one batch, update the registry, notify."""
        now = _now()
        failed = len(result.failures)
        async with self._session_factory() as session:
            session.add_all(
                SyncError(
                    job_id=job.id,
                    record_id=record_id,
                    error_type=type(exc).__name__,
                    error_message=str(exc) or type(exc).__name__,
                    created_at=now,
                )
                for record_id, exc in result.failures
            )
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job.id)
                .values(
                    processed_records=SyncJob.processed_records + result.processed,
                    successful_records=SyncJob.successful_records + (result.processed - failed),
                    failed_records=SyncJob.failed_records + failed,
                    updated_at=now,
                )
            )
            await session.commit()

        await self._registry.record_upsert(ds.collection_name, result.new_points, now)
        if result.removed_points:
            await self._registry.record_delete(ds.collection_name, result.removed_points, now)

        progress.batches += 1
        progress.processed += result.processed
        progress.successful += result.processed - failed
        progress.failed += failed
        if failed:
            logger.warning(
                "Job %s batch %d: %d of %d rows failed",
                job.id,
                progress.batches,
                failed,
                result.processed,
            )
        else:
            logger.debug(
                "Job %s batch %d: %d rows synced", job.id, progress.batches, result.processed
            )
        await self._emit(EventType.BATCH_COMPLETED, job, progress)

    async def _mark_running(self, job_id: str) -> None:
        now = _now()
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id, SyncJob.status == JobStatus.PENDING.value)
                .values(status=JobStatus.RUNNING.value, started_at=now, updated_at=now)
            )
            await session.commit()

    async def _set_total(self, job_id: str, total: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.id == job_id)
                .values(total_records=total, updated_at=_now())
            )
            await session.commit()

    async def _cancel_requested(self, job_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncJob.cancel_requested).where(SyncJob.id == job_id)
            )
            return bool(result.scalar_one_or_none())

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        *,
        message: str | None = None,
        watermark: Marker | None = None,
        progress: _Progress | None = None,
    ) -> None:
        """Apply a terminal status, advance the watermark, release the slot.

        All three happen in one transaction.  A job already terminal is left
        untouched.
        """
        now = _now()
        async with self._session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None or job.is_terminal:
                return
            job.status = status.value
            job.completed_at = now
            job.updated_at = now
            if message is not None:
                job.error_message = message

            if status == JobStatus.COMPLETED and job.type != JobType.WEBHOOK.value:
                ds = await session.get(Datasource, job.datasource_id)
                if ds is not None:
                    if watermark is not None:
                        current = parse_watermark(ds.watermark_kind, ds.watermark)
                        ds.watermark = format_watermark(
                            ds.watermark_kind, advance(current, watermark)
                        )
                    ds.last_synced_at = now
                    ds.updated_at = now

            slot = await session.get(ActiveJobSlot, job.datasource_id)
            if slot is not None and slot.job_id == job.id:
                await session.delete(slot)
            await session.commit()
            await session.refresh(job)

        event_type = {
            JobStatus.COMPLETED: EventType.JOB_COMPLETED,
            JobStatus.FAILED: EventType.JOB_FAILED,
            JobStatus.CANCELLED: EventType.JOB_CANCELLED,
        }[status]
        await self._emit(event_type, job, progress or _Progress(), message=message)

    async def _pause(self, ds: Datasource) -> None:
        if ds.batch_delay_ms is not None:
            delay = ds.batch_delay_ms / 1000
        else:
            delay = self._settings.batch_delay
        if delay > 0:
            await asyncio.sleep(delay)

    async def _emit(
        self,
        event_type: EventType,
        job: SyncJob,
        progress: _Progress,
        *,
        message: str | None = None,
    ) -> None:
        await self._events.emit(
            SyncEvent(
                event_type=event_type,
                job_id=job.id,
                datasource_id=job.datasource_id,
                batch_number=progress.batches if event_type == EventType.BATCH_COMPLETED else None,
                processed=progress.processed,
                successful=progress.successful,
                failed=progress.failed,
                message=message,
            )
        )


def _record_id_or_none(ds: Datasource, row: Row) -> str | None:
    try:
        return record_id_of(ds, row)
    except RowError:
        return None


def _rejections(failed_ids: list[str], errors: list[str]) -> dict[str, str]:
    return {
        point_id: errors[i] if i < len(errors) else "rejected by the vector store"
        for i, point_id in enumerate(failed_ids)
    }
