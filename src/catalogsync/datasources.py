"""DatasourceRepository — create, read, update and remove datasource configurations."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from croniter import croniter
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from catalogsync.exceptions import (
    ConflictError,
    InvalidRequestError,
    MalformedRowError,
    NotFoundError,
)
from catalogsync.models.datasources import (
    Datasource,
    DatasourceStatus,
    SourceKind,
    WatermarkKind,
)
from catalogsync.models.jobs import SyncJob
from catalogsync.source.watermark import parse_watermark

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def validate_datasource(ds: Datasource) -> None:
    """Check a datasource's configuration before it is stored.

    Raises:
        InvalidRequestError: describing the first problem found.
    """
    problems: list[str] = []
    if not ds.name:
        problems.append("name is required")
    if not ds.connection_url:
        problems.append("connection_url is required")
    if bool(ds.table_name) == bool(ds.query):
        problems.append("exactly one of table_name or query is required")
    if not ds.embedding_fields:
        problems.append("embedding_fields must name at least one column")
    if not ds.collection_name:
        problems.append("collection_name is required")
    if ds.batch_size is not None and not 1 <= ds.batch_size <= 10_000:
        problems.append("batch_size must be between 1 and 10000")
    if ds.sync_schedule is not None and not croniter.is_valid(ds.sync_schedule):
        problems.append(f"sync_schedule {ds.sync_schedule!r} is not a valid cron expression")
    if ds.batch_delay_ms is not None and ds.batch_delay_ms < 0:
        problems.append("batch_delay_ms must not be negative")
    for field, enum in (
        ("kind", SourceKind),
        ("watermark_kind", WatermarkKind),
        ("status", DatasourceStatus),
    ):
        value = getattr(ds, field)
        if value not in {m.value for m in enum}:
            allowed = ", ".join(m.value for m in enum)
            problems.append(f"{field} must be one of {allowed}, got {value!r}")
    if not problems and ds.watermark:
        try:
            parse_watermark(ds.watermark_kind, ds.watermark)
        except (MalformedRowError, ValueError) as exc:
            problems.append(f"watermark {ds.watermark!r} is invalid: {exc}")
    if problems:
        msg = f"Invalid datasource {ds.name!r}: " + "; ".join(problems)
        raise InvalidRequestError(msg)


class DatasourceRepository:
    """Persistence for :class:`Datasource` rows."""

    def __init__(self, session_factory: Callable[..., AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, **fields: Any) -> Datasource:
        """Store a new datasource.

        Raises:
            InvalidRequestError: if the configuration is inconsistent.
            ConflictError: if the name is already taken.
        """
        for enum_field in ("kind", "watermark_kind", "status"):
            value = fields.get(enum_field)
            if value is not None and not isinstance(value, str):
                fields[enum_field] = value.value
        ds = Datasource(**fields)
        validate_datasource(ds)
        async with self._session_factory() as session:
            session.add(ds)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"A datasource named {ds.name!r} already exists"
                raise ConflictError(msg) from exc
            await session.refresh(ds)
        logger.info("Created datasource %s -> %s", ds.name, ds.collection_name)
        return ds

    async def get(self, datasource_id: str) -> Datasource:
        """Return the datasource with *datasource_id*.

        Raises:
            NotFoundError: if it does not exist.
        """
        async with self._session_factory() as session:
            ds = await session.get(Datasource, datasource_id)
        if ds is None:
            msg = f"Datasource {datasource_id!r} not found"
            raise NotFoundError(msg)
        return ds

    async def get_by_name(self, name: str) -> Datasource:
        async with self._session_factory() as session:
            result = await session.execute(select(Datasource).where(Datasource.name == name))
            ds = result.scalar_one_or_none()
        if ds is None:
            msg = f"Datasource named {name!r} not found"
            raise NotFoundError(msg)
        return ds

    async def list(self, *, status: DatasourceStatus | str | None = None) -> list[Datasource]:
        """Return datasources ordered by name, optionally only those with *status*."""
        stmt = select(Datasource).order_by(Datasource.name)
        if status is not None:
            stmt = stmt.where(Datasource.status == DatasourceStatus(status).value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update(self, datasource_id: str, **changes: Any) -> Datasource:
        """Apply *changes* to a datasource and return the stored result."""
        bad = _IMMUTABLE_FIELDS.intersection(changes)
        if bad:
            msg = f"Cannot change {', '.join(sorted(bad))}"
            raise InvalidRequestError(msg)
        async with self._session_factory() as session:
            ds = await session.get(Datasource, datasource_id)
            if ds is None:
                msg = f"Datasource {datasource_id!r} not found"
                raise NotFoundError(msg)
            for key, value in changes.items():
                if not hasattr(ds, key):
                    msg = f"Datasource has no field {key!r}"
                    raise InvalidRequestError(msg)
                setattr(ds, key, getattr(value, "value", value))
            validate_datasource(ds)
            ds.updated_at = datetime.now(UTC)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"A datasource named {ds.name!r} already exists"
                raise ConflictError(msg) from exc
            await session.refresh(ds)
            return ds

    async def set_status(self, datasource_id: str, status: DatasourceStatus | str) -> Datasource:
        return await self.update(datasource_id, status=DatasourceStatus(status).value)

    async def delete(self, datasource_id: str) -> None:
        """Remove a datasource that no sync job references.

        Raises:
            ConflictError: if any sync job (of any status) references it.
        """
        async with self._session_factory() as session:
            ds = await session.get(Datasource, datasource_id)
            if ds is None:
                msg = f"Datasource {datasource_id!r} not found"
                raise NotFoundError(msg)
            result = await session.execute(
                select(func.count())
                .select_from(SyncJob)
                .where(SyncJob.datasource_id == datasource_id)
            )
            if result.scalar_one() > 0:
                msg = f"Datasource {ds.name!r} is referenced by sync jobs"
                raise ConflictError(msg)
            await session.delete(ds)
            await session.commit()
        logger.info("Deleted datasource %s", ds.name)
