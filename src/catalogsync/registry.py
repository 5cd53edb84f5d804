"""CollectionRegistry — registry rows kept consistent with the vector store's collections."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, update
from sqlmodel import select

from catalogsync.dialect import upsert_row
from catalogsync.exceptions import (
    CapabilityNotSupportedError,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    SchemaConflictError,
)
from catalogsync.models.collections import CollectionRecord
from catalogsync.search.protocols import SupportsCollectionLifecycle
from catalogsync.search.types import CollectionConfig, CollectionInfo, Distance, HnswParams

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from catalogsync.search.protocols import VectorStore

logger = logging.getLogger(__name__)


class CollectionRegistry:
    """Tracks vector size, distance, HNSW params and point counts per collection.

    Collections are created in the store on demand.  Point counts are moved
    with relative SQL updates (``total_points = total_points + :n``), never
    read-modify-write, so jobs writing to the same collection concurrently
    keep the count exact.  Deleting a collection never touches datasources.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        store: VectorStore,
        *,
        dialect: str = "sqlite",
    ) -> None:
        if not isinstance(store, SupportsCollectionLifecycle):
            msg = f"{type(store).__name__} cannot create or delete collections"
            raise CapabilityNotSupportedError(msg)
        self._session_factory = session_factory
        self._store = store
        self._lifecycle: SupportsCollectionLifecycle = store
        self._dialect = dialect

    # ------------------------------------------------------------------
    # Create / ensure
    # ------------------------------------------------------------------

    async def ensure_collection(
        self,
        name: str,
        vector_size: int,
        distance: Distance | str = Distance.COSINE,
        hnsw: HnswParams | None = None,
    ) -> CollectionRecord:
        """Create *name* if absent and return its registry row.

        Idempotent for matching parameters.  A collection the store already
        has but the registry does not know is adopted with its reported
        point count.

        Raises:
            SchemaConflictError: *name* exists with another vector size or distance.
        """
        distance = Distance.parse(distance)
        hnsw = hnsw or HnswParams()
        if vector_size < 1:
            msg = f"vector_size must be positive, got {vector_size}"
            raise InvalidRequestError(msg)

        record = await self.get_collection(name, required=False)
        if record is not None:
            _check_schema(
                name, record.vector_size, Distance.parse(record.distance), vector_size, distance
            )

        info = await self._lifecycle.get_collection(name)
        created = False
        if info is None:
            try:
                await self._lifecycle.create_collection(
                    CollectionConfig(
                        name=name, dimension=vector_size, distance=distance, hnsw=hnsw
                    )
                )
                created = True
                logger.info(
                    "Created collection %s (size=%d, %s)", name, vector_size, distance.value
                )
            except ConflictError:
                # Another job created it first
                info = await self._lifecycle.get_collection(name)
                if info is None:
                    raise
        if info is not None:
            _check_schema(name, info.dimension, info.distance, vector_size, distance)

        if record is not None and not created:
            return record

        now = datetime.now(UTC)
        params = info.hnsw if info is not None and info.hnsw is not None else hnsw
        async with self._session_factory() as session:
            if record is None:
                await upsert_row(
                    session,
                    self._dialect,
                    CollectionRecord,
                    {
                        "name": name,
                        "vector_size": vector_size,
                        "distance": distance.value,
                        "hnsw_m": params.m,
                        "hnsw_ef_construct": params.ef_construct,
                        "total_points": info.point_count if info else 0,
                        "created_at": now,
                        "updated_at": now,
                    },
                    conflict_keys=["name"],
                    update_keys=["updated_at"],
                )
            else:
                # The store lost the collection; the recreated one is empty
                await session.execute(
                    update(CollectionRecord)
                    .where(CollectionRecord.name == name)
                    .values(
                        total_points=0,
                        hnsw_m=hnsw.m,
                        hnsw_ef_construct=hnsw.ef_construct,
                        updated_at=now,
                    )
                )
            await session.commit()

        return await self.get_collection(name)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def record_upsert(
        self, name: str, point_count: int, timestamp: datetime | None = None
    ) -> None:
        """Add *point_count* new points to *name* and stamp ``updated_at``/``last_synced_at``."""
        ts = timestamp or datetime.now(UTC)
        await self._apply(
            name,
            total_points=CollectionRecord.total_points + point_count,
            updated_at=ts,
            last_synced_at=ts,
        )

    async def record_delete(
        self, name: str, point_count: int, timestamp: datetime | None = None
    ) -> None:
        """Subtract *point_count* points from *name*, never going below zero."""
        ts = timestamp or datetime.now(UTC)
        await self._apply(
            name,
            total_points=case(
                (
                    CollectionRecord.total_points > point_count,
                    CollectionRecord.total_points - point_count,
                ),
                else_=0,
            ),
            updated_at=ts,
        )

    async def refresh_stats(self, name: str) -> CollectionRecord:
        """Overwrite ``total_points`` with the count the store reports."""
        info = await self._lifecycle.get_collection(name)
        if info is None:
            msg = f"Collection {name!r} does not exist in the vector store"
            raise NotFoundError(msg)
        if await self.get_collection(name, required=False) is None:
            return await self.ensure_collection(name, info.dimension, info.distance, info.hnsw)
        await self._apply(name, total_points=info.point_count, updated_at=datetime.now(UTC))
        return await self.get_collection(name)

    # ------------------------------------------------------------------
    # Read / delete
    # ------------------------------------------------------------------

    async def get_collection(
        self, name: str, *, required: bool = True
    ) -> CollectionRecord | None:
        """Return the registry row for *name*.

        Raises:
            NotFoundError: if *required* and the row does not exist.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(CollectionRecord).where(CollectionRecord.name == name)
            )
            record = result.scalar_one_or_none()
        if record is None and required:
            msg = f"Collection {name!r} is not registered"
            raise NotFoundError(msg)
        return record

    async def list_collections(self) -> list[CollectionRecord]:
        """Return all registry rows, sorted by name."""
        async with self._session_factory() as session:
            result = await session.execute(select(CollectionRecord).order_by(CollectionRecord.name))
            return list(result.scalars().all())

    async def store_info(self, name: str) -> CollectionInfo | None:
        """Return what the vector store reports for *name*."""
        return await self._lifecycle.get_collection(name)

    async def delete_collection(self, name: str) -> None:
        """Drop the store collection and the registry row.

        Datasources targeting *name* are left as they are; their next sync
        recreates the collection.
        """
        record = await self.get_collection(name, required=False)
        info = await self._lifecycle.get_collection(name)
        if record is None and info is None:
            msg = f"Collection {name!r} does not exist"
            raise NotFoundError(msg)

        if info is not None:
            await self._lifecycle.delete_collection(name)
        if record is not None:
            async with self._session_factory() as session:
                row = await session.get(CollectionRecord, name)
                if row is not None:
                    await session.delete(row)
                await session.commit()
        logger.info("Deleted collection %s", name)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _apply(self, name: str, **values: object) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(CollectionRecord).where(CollectionRecord.name == name).values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                msg = f"Collection {name!r} is not registered"
                raise NotFoundError(msg)
            await session.commit()


def _check_schema(
    name: str,
    have_size: int,
    have_distance: Distance,
    want_size: int,
    want_distance: Distance,
) -> None:
    if have_size != want_size or have_distance != want_distance:
        msg = (
            f"Collection {name!r} exists with vector size {have_size} and "
            f"{have_distance.value} distance; requested {want_size} and {want_distance.value}"
        )
        raise SchemaConflictError(msg)
