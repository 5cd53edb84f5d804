"""Shared fixtures and fakes for catalogsync tests."""

from __future__ import annotations

import asyncio
import hashlib
import math
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from catalogsync.config import SyncSettings
from catalogsync.datasources import DatasourceRepository
from catalogsync.events import EventBus
from catalogsync.exceptions import EmbeddingError, NotFoundError
from catalogsync.registry import CollectionRegistry
from catalogsync.search.filters import evaluate
from catalogsync.search.stores.local import LocalVectorStore
from catalogsync.search.types import (
    CollectionInfo,
    DeleteResult,
    Distance,
    ScrollPage,
    UpsertResult,
    VectorEntry,
    VectorSearchResult,
)
from catalogsync.source.watermark import coerce_marker, comparable
from catalogsync.sync.orchestrator import SyncOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from catalogsync.models.datasources import Datasource
    from catalogsync.search.filters import FilterExpression
    from catalogsync.search.types import CollectionConfig

DIM = 16


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


def hash_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic unit vector from a text hash; unrelated texts are near-orthogonal."""
    digest = hashlib.sha256(" ".join(text.lower().split()).encode()).digest()
    raw = [float(b) - 127.5 for b in (digest * ((dim // len(digest)) + 1))[:dim]]
    norm = math.sqrt(sum(x * x for x in raw)) or 1.0
    return [x / norm for x in raw]


class FakeEmbedding:
    """Hash-based embedding provider with injectable failures."""

    def __init__(self, dim: int = DIM) -> None:
        self._dim = dim
        self.fail_on: dict[str, BaseException] = {}
        self.raise_always: BaseException | None = None
        self.transient: list[BaseException] = []
        self.wrong_size = False
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.raise_always is not None:
            raise self.raise_always
        if self.transient:
            raise self.transient.pop(0)
        for needle, exc in self.fail_on.items():
            if needle in text:
                raise exc
        if not text.strip():
            msg = "Cannot embed empty text"
            raise EmbeddingError(msg)
        vector = hash_vector(text, self._dim)
        return vector[:-1] if self.wrong_size else vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return self._dim

    @property
    def model_name(self) -> str:
        return "fake-hash"


class FakeSourceReader:
    """In-memory source: rows per datasource id, ordered by change marker then id."""

    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows: list[dict[str, Any]] = list(rows or [])
        self.gate: asyncio.Event | None = None
        self.error: BaseException | None = None
        self.reads: list[tuple[Any, int, int]] = []
        self.record_reads: list[list[str]] = []
        self.closed = False

    def _ordered(self, datasource: Datasource, watermark: Any) -> list[dict[str, Any]]:
        marker_field, id_field = datasource.change_marker_field, datasource.id_field
        rows = [
            r
            for r in self.rows
            if watermark is None or comparable(r[marker_field]) > comparable(watermark)
        ]
        return sorted(rows, key=lambda r: (r[marker_field], str(r[id_field])))

    async def read_rows(
        self, datasource: Datasource, *, watermark: Any = None, limit: int, offset: int = 0
    ) -> list[dict[str, Any]]:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.reads.append((watermark, limit, offset))
        return [dict(r) for r in self._ordered(datasource, watermark)[offset : offset + limit]]

    async def read_records(
        self, datasource: Datasource, record_ids: list[str]
    ) -> list[dict[str, Any]]:
        if self.error is not None:
            raise self.error
        self.record_reads.append(list(record_ids))
        wanted = set(record_ids)
        return [dict(r) for r in self.rows if str(r[datasource.id_field]) in wanted]

    async def count_rows(self, datasource: Datasource, *, watermark: Any = None) -> int:
        if self.error is not None:
            raise self.error
        return len(self._ordered(datasource, watermark))

    def change_marker_of(self, datasource: Datasource, row: dict[str, Any]) -> Any:
        return coerce_marker(datasource.watermark_kind, row.get(datasource.change_marker_field))

    async def close(self) -> None:
        self.closed = True


class ScriptedStore:
    """Vector store whose neighbor scores are scripted per point id.

    ``search`` identifies the query point by its vector and answers with the
    scripted ``(neighbor, score)`` pairs plus the point itself at 1.0.
    """

    def __init__(self) -> None:
        self.entries: dict[str, VectorEntry] = {}
        self.neighbors: dict[str, list[tuple[str, float]]] = {}
        self.writes = 0
        self.search_calls = 0

    def add(
        self,
        point_id: str,
        payload: dict[str, Any],
        neighbors: list[tuple[str, float]] | None = None,
    ) -> None:
        self.entries[point_id] = VectorEntry(
            id=point_id, vector=hash_vector(point_id), metadata=dict(payload)
        )
        self.neighbors[point_id] = list(neighbors or [])

    def link(self, a: str, b: str, score: float) -> None:
        self.neighbors[a].append((b, score))
        self.neighbors[b].append((a, score))

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> UpsertResult:
        self.writes += 1
        for e in entries:
            self.entries[e.id] = e
        return UpsertResult(upserted_count=len(entries))

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
        include_vectors: bool = False,
    ) -> list[VectorSearchResult]:
        self.search_calls += 1
        source = next(pid for pid, e in self.entries.items() if e.vector == vector)
        pairs = [(source, 1.0), *self.neighbors.get(source, [])]
        results = []
        for pid, score in pairs:
            entry = self.entries.get(pid)
            if entry is None:
                continue
            if filter is not None and not evaluate(filter, entry.metadata):
                continue
            if score_threshold is not None and score < score_threshold:
                continue
            results.append(VectorSearchResult(id=pid, score=score, metadata=dict(entry.metadata)))
        results.sort(key=lambda r: (-r.score, r.id))
        return results[:k]

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        self.writes += 1
        return DeleteResult(deleted_count=sum(1 for i in ids if self.entries.pop(i, None)))

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorEntry | None]:
        return [self.entries.get(i) for i in ids]

    async def scroll(
        self,
        collection: str,
        *,
        filter: FilterExpression | None = None,  # noqa: A002
        limit: int = 256,
        offset: Any = None,
    ) -> ScrollPage:
        matching = [
            e for e in self.entries.values() if filter is None or evaluate(filter, e.metadata)
        ]
        start = int(offset or 0)
        page = matching[start : start + limit]
        next_offset = start + limit if start + limit < len(matching) else None
        return ScrollPage(entries=page, next_offset=next_offset)

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def create_collection(self, config: CollectionConfig) -> None:
        pass

    async def delete_collection(self, name: str) -> None:
        msg = f"Collection {name!r} does not exist"
        raise NotFoundError(msg)

    async def get_collection(self, name: str) -> CollectionInfo | None:
        return CollectionInfo(
            name=name, dimension=DIM, distance=Distance.COSINE, point_count=len(self.entries)
        )

    async def list_collections(self) -> list[CollectionInfo]:
        return []


# ------------------------------------------------------------------
# Database
# ------------------------------------------------------------------


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine so concurrent sessions see one database."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> Callable[..., AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# ------------------------------------------------------------------
# Components
# ------------------------------------------------------------------


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(batch_size=3, retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


@pytest.fixture
def embedding() -> FakeEmbedding:
    return FakeEmbedding()


@pytest.fixture
def source() -> FakeSourceReader:
    return FakeSourceReader(
        [
            {
                "codigo": f"P{i:03d}",
                "descripcion": f"Producto numero {i}",
                "marca": "ACME",
                "updated_at": i,
            }
            for i in range(1, 8)
        ]
    )


@pytest.fixture
def store() -> LocalVectorStore:
    return LocalVectorStore()


@pytest.fixture
def repo(session_factory: Callable[..., AsyncSession]) -> DatasourceRepository:
    return DatasourceRepository(session_factory)


@pytest.fixture
def registry(
    session_factory: Callable[..., AsyncSession], store: LocalVectorStore
) -> CollectionRegistry:
    return CollectionRegistry(session_factory, store)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def orchestrator(
    session_factory: Callable[..., AsyncSession],
    source: FakeSourceReader,
    embedding: FakeEmbedding,
    store: LocalVectorStore,
    registry: CollectionRegistry,
    settings: SyncSettings,
    event_bus: EventBus,
) -> AsyncIterator[SyncOrchestrator]:
    orch = SyncOrchestrator(
        session_factory,
        source_reader=source,
        embedding_provider=embedding,
        store=store,
        registry=registry,
        settings=settings,
        event_bus=event_bus,
    )
    yield orch
    if source.gate is not None:
        source.gate.set()
    await orch.close()


def datasource_fields(**overrides: Any) -> dict[str, Any]:
    """Keyword arguments for a sequence-watermarked datasource over ``productos``."""
    fields: dict[str, Any] = {
        "name": "erp",
        "kind": "postgresql",
        "connection_url": "postgresql://catalog@erp-db/erp",
        "table_name": "productos",
        "id_field": "codigo",
        "change_marker_field": "updated_at",
        "watermark_kind": "sequence",
        "embedding_fields": ["descripcion", "marca"],
        "collection_name": "products",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
async def datasource(repo: DatasourceRepository) -> Datasource:
    return await repo.create(**datasource_fields())
