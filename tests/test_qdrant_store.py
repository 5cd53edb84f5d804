"""Tests for QdrantVectorStore against qdrant-client's in-memory mode."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from catalogsync.exceptions import (
    ConflictError,
    NotFoundError,
    PointRejectedError,
    StoreError,
    StoreUnavailableError,
)
from catalogsync.search.filters import eq, gte
from catalogsync.search.protocols import (
    SupportsCollectionLifecycle,
    SupportsMetadataFilter,
    VectorStore,
)
from catalogsync.search.types import CollectionConfig, Distance, HnswParams, VectorEntry
from catalogsync.sync.payloads import point_id_for
from tests.conftest import DIM, hash_vector

pytest.importorskip("qdrant_client")

from qdrant_client import AsyncQdrantClient, models  # noqa: E402
from qdrant_client.http.exceptions import (  # noqa: E402
    ResponseHandlingException,
    UnexpectedResponse,
)

from catalogsync.search.stores.qdrant import QdrantVectorStore  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _entry(code: str, text: str, **payload) -> VectorEntry:
    """Qdrant ids must be UUIDs; derive them the way sync does."""
    return VectorEntry(
        id=point_id_for(code), vector=hash_vector(text), metadata={"codigo": code, **payload}
    )


@pytest.fixture
async def store() -> AsyncIterator[QdrantVectorStore]:
    s = QdrantVectorStore(url="http://qdrant.test:6333")
    s._client = AsyncQdrantClient(location=":memory:")
    await s.create_collection(
        CollectionConfig(name="products", dimension=DIM, hnsw=HnswParams(m=8, ef_construct=64))
    )
    yield s
    await s.close()


def _unexpected(status: int) -> UnexpectedResponse:
    import httpx

    return UnexpectedResponse(
        status_code=status,
        reason_phrase="error",
        content=b'{"status": {"error": "bad"}}',
        headers=httpx.Headers(),
    )


def _mock_store(**client_methods) -> QdrantVectorStore:
    s = QdrantVectorStore(url="http://qdrant.test:6333")
    client = MagicMock()
    for name, side_effect in client_methods.items():
        setattr(client, name, AsyncMock(side_effect=side_effect))
    s._client = client
    s._distances["products"] = Distance.COSINE
    return s


# ==================================================================
# Protocols / lifecycle
# ==================================================================


class TestProtocols:
    def test_implements_protocols(self) -> None:
        s = QdrantVectorStore()
        assert isinstance(s, VectorStore)
        assert isinstance(s, SupportsCollectionLifecycle)
        assert isinstance(s, SupportsMetadataFilter)

    async def test_requires_connect(self) -> None:
        with pytest.raises(RuntimeError, match="connect"):
            await QdrantVectorStore().search("products", [0.0] * DIM)

    def test_compile_filter_returns_model(self) -> None:
        compiled = QdrantVectorStore().compile_filter(eq("marca", "ACME"))
        assert isinstance(compiled, models.Filter)


class TestCollections:
    async def test_get_collection(self, store: QdrantVectorStore) -> None:
        info = await store.get_collection("products")
        assert info is not None
        assert info.dimension == DIM
        assert info.distance == Distance.COSINE
        assert info.point_count == 0

    async def test_create_duplicate_conflicts(self, store: QdrantVectorStore) -> None:
        with pytest.raises(ConflictError):
            await store.create_collection(CollectionConfig(name="products", dimension=DIM))

    async def test_list_and_delete(self, store: QdrantVectorStore) -> None:
        await store.create_collection(
            CollectionConfig(name="archive", dimension=DIM, distance=Distance.DOT)
        )
        assert [c.name for c in await store.list_collections()] == ["archive", "products"]

        await store.delete_collection("archive")
        assert [c.name for c in await store.list_collections()] == ["products"]

    async def test_delete_missing_collection(self, store: QdrantVectorStore) -> None:
        with pytest.raises(NotFoundError):
            await store.delete_collection("ghost")


# ==================================================================
# Points
# ==================================================================


class TestPoints:
    async def test_upsert_and_search(self, store: QdrantVectorStore) -> None:
        entries = [_entry(f"P{i}", f"item {i}") for i in range(4)]
        result = await store.upsert("products", entries)
        assert result.upserted_count == 4

        hits = await store.search("products", hash_vector("item 2"), k=2)
        assert hits[0].id == point_id_for("P2")
        assert hits[0].score == pytest.approx(1.0, abs=1e-4)
        assert hits[0].metadata["codigo"] == "P2"

    async def test_search_threshold_and_filter(self, store: QdrantVectorStore) -> None:
        await store.upsert(
            "products",
            [_entry(f"P{i}", f"item {i}", marca="ACME" if i % 2 else "Bosch") for i in range(4)],
        )
        hits = await store.search(
            "products", hash_vector("item 0"), k=4, filter=eq("marca", "ACME")
        )
        assert {h.metadata["codigo"] for h in hits} == {"P1", "P3"}

        hits = await store.search("products", hash_vector("item 0"), k=4, score_threshold=0.99)
        assert [h.metadata["codigo"] for h in hits] == ["P0"]

    async def test_fetch_keeps_order_and_missing(self, store: QdrantVectorStore) -> None:
        await store.upsert("products", [_entry("P1", "drill")])
        fetched = await store.fetch("products", [point_id_for("P9"), point_id_for("P1")])
        assert fetched[0] is None
        assert fetched[1] is not None
        assert fetched[1].metadata == {"codigo": "P1"}
        assert len(fetched[1].vector) == DIM

    async def test_scroll_with_filter(self, store: QdrantVectorStore) -> None:
        await store.upsert(
            "products", [_entry(f"P{i}", f"item {i}", stock=i) for i in range(5)]
        )
        seen: list[str] = []
        offset = None
        while True:
            page = await store.scroll("products", filter=gte("stock", 2), limit=2, offset=offset)
            seen.extend(e.metadata["codigo"] for e in page.entries)
            if page.next_offset is None:
                break
            offset = page.next_offset
        assert sorted(seen) == ["P2", "P3", "P4"]

    async def test_delete(self, store: QdrantVectorStore) -> None:
        await store.upsert("products", [_entry("P1", "drill"), _entry("P2", "saw")])
        await store.delete("products", [point_id_for("P1")])

        info = await store.get_collection("products")
        assert info is not None
        assert info.point_count == 1
        assert (await store.delete("products", [])).deleted_count == 0


class TestEuclid:
    async def test_scores_converted_from_distance(self) -> None:
        s = QdrantVectorStore()
        s._client = AsyncQdrantClient(location=":memory:")
        await s.create_collection(
            CollectionConfig(name="l2", dimension=DIM, distance=Distance.EUCLIDEAN)
        )
        await s.upsert("l2", [_entry("P1", "same"), _entry("P2", "other")])

        hits = await s.search("l2", hash_vector("same"), k=2, score_threshold=0.9)
        assert [h.metadata["codigo"] for h in hits] == ["P1"]
        assert hits[0].score == pytest.approx(1.0, abs=1e-3)
        await s.close()


# ==================================================================
# Error mapping
# ==================================================================


class TestErrorMapping:
    async def test_404_is_not_found(self) -> None:
        s = _mock_store(query_points=_unexpected(404))
        with pytest.raises(NotFoundError):
            await s.search("products", [0.0] * DIM)

    async def test_get_missing_collection_is_none(self) -> None:
        s = _mock_store(get_collection=_unexpected(404))
        assert await s.get_collection("ghost") is None

    @pytest.mark.parametrize("status", [500, 503, 429])
    async def test_server_errors_are_unavailable(self, status: int) -> None:
        s = _mock_store(upsert=_unexpected(status))
        with pytest.raises(StoreUnavailableError):
            await s.upsert("products", [_entry("P1", "x")])

    async def test_4xx_on_write_rejects_points(self) -> None:
        s = _mock_store(upsert=_unexpected(400))
        with pytest.raises(PointRejectedError):
            await s.upsert("products", [_entry("P1", "x")])

    async def test_4xx_on_read_is_store_error(self) -> None:
        s = _mock_store(query_points=_unexpected(400))
        with pytest.raises(StoreError) as info:
            await s.search("products", [0.0] * DIM)
        assert not isinstance(info.value, StoreUnavailableError)

    @pytest.mark.parametrize(
        "exc", [ResponseHandlingException(Exception("refused")), ConnectionError("refused")]
    )
    async def test_transport_errors_are_unavailable(self, exc: Exception) -> None:
        s = _mock_store(scroll=exc)
        with pytest.raises(StoreUnavailableError):
            await s.scroll("products")
