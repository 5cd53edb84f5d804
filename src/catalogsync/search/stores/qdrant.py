"""QdrantVectorStore — Qdrant vector database backend."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from catalogsync.exceptions import (
    ConflictError,
    NotFoundError,
    PointRejectedError,
    StoreError,
    StoreUnavailableError,
)
from catalogsync.search.filters import FilterExpression, compile_qdrant
from catalogsync.search.types import (
    CollectionConfig,
    CollectionInfo,
    DeleteResult,
    Distance,
    HnswParams,
    ScrollPage,
    UpsertResult,
    VectorEntry,
    VectorSearchResult,
)

try:
    from qdrant_client import AsyncQdrantClient, models
    from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

    _HAS_QDRANT = True
except ImportError:  # pragma: no cover
    AsyncQdrantClient = None  # type: ignore[assignment,misc]
    models = None  # type: ignore[assignment]
    ResponseHandlingException = UnexpectedResponse = None  # type: ignore[assignment,misc]
    _HAS_QDRANT = False

if TYPE_CHECKING:
    from collections.abc import Awaitable

logger = logging.getLogger(__name__)

_UPSERT_BATCH_SIZE = 256


class QdrantVectorStore:
    """Qdrant vector store.

    Implements ``VectorStore``, ``SupportsCollectionLifecycle`` and
    ``SupportsMetadataFilter``.  Transport failures and 5xx responses raise
    :class:`StoreUnavailableError`; 4xx responses on writes raise
    :class:`PointRejectedError`; a missing collection raises
    :class:`NotFoundError`.

    Usage::

        store = QdrantVectorStore(url="http://localhost:6333")
        await store.connect()
        await store.upsert("products", [VectorEntry(id=..., vector=[0.1, ...])])
        results = await store.search("products", [0.1, ...], k=5)
        await store.close()
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        prefer_grpc: bool = False,
    ) -> None:
        if not _HAS_QDRANT:
            msg = (
                "qdrant-client is required for QdrantVectorStore. "
                "Install it with: pip install catalogsync[qdrant]"
            )
            raise ImportError(msg)

        self._url = url or os.environ.get("QDRANT_URL", "http://localhost:6333")
        self._api_key = api_key or os.environ.get("QDRANT_API_KEY") or None
        self._timeout = timeout
        self._prefer_grpc = prefer_grpc
        self._client: Any = None
        # collection → distance, for score conversion
        self._distances: dict[str, Distance] = {}

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> UpsertResult:
        """Upsert points, chunked at 256 per request, waiting for the write."""
        client = self._require_client()

        total = 0
        for i in range(0, len(entries), _UPSERT_BATCH_SIZE):
            batch = entries[i : i + _UPSERT_BATCH_SIZE]
            points = [
                models.PointStruct(id=e.id, vector=e.vector, payload=e.metadata) for e in batch
            ]
            await self._call(
                collection,
                client.upsert(collection_name=collection, points=points, wait=True),
                write=True,
            )
            total += len(batch)

        return UpsertResult(upserted_count=total)

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
        """Query the collection for nearest points."""
        client = self._require_client()
        distance = await self._distance_of(collection)

        kwargs: dict[str, Any] = {
            "collection_name": collection,
            "query": vector,
            "limit": k,
            "with_payload": True,
            "with_vectors": include_vectors,
        }
        if filter is not None:
            kwargs["query_filter"] = self.compile_filter(filter)
        # Euclid scores are distances server-side; threshold locally after conversion
        if score_threshold is not None and distance != Distance.EUCLIDEAN:
            kwargs["score_threshold"] = score_threshold

        resp = await self._call(collection, client.query_points(**kwargs))

        results: list[VectorSearchResult] = []
        for point in resp.points:
            score = float(point.score)
            if distance == Distance.EUCLIDEAN:
                score = 1.0 / (1.0 + score)
            if score_threshold is not None and score < score_threshold:
                continue
            results.append(
                VectorSearchResult(
                    id=str(point.id),
                    score=score,
                    metadata=dict(point.payload) if point.payload else {},
                    vector=_dense(point.vector) if include_vectors else None,
                )
            )
        return results

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete points by their IDs."""
        client = self._require_client()
        if not ids:
            return DeleteResult(deleted_count=0)
        await self._call(
            collection,
            client.delete(
                collection_name=collection,
                points_selector=models.PointIdsList(points=list(ids)),
                wait=True,
            ),
            write=True,
        )
        # Qdrant does not report how many of the ids existed
        return DeleteResult(deleted_count=len(ids))

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorEntry | None]:
        """Fetch points by their IDs."""
        client = self._require_client()
        if not ids:
            return []
        records = await self._call(
            collection,
            client.retrieve(
                collection_name=collection, ids=list(ids), with_payload=True, with_vectors=True
            ),
        )
        found = {str(r.id): r for r in records}
        results: list[VectorEntry | None] = []
        for entry_id in ids:
            record = found.get(entry_id)
            if record is None:
                results.append(None)
            else:
                results.append(
                    VectorEntry(
                        id=str(record.id),
                        vector=_dense(record.vector) or [],
                        metadata=dict(record.payload) if record.payload else {},
                    )
                )
        return results

    async def scroll(
        self,
        collection: str,
        *,
        filter: FilterExpression | None = None,  # noqa: A002
        limit: int = 256,
        offset: Any = None,
    ) -> ScrollPage:
        """Page through points with Qdrant's scroll API."""
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "collection_name": collection,
            "limit": limit,
            "offset": offset,
            "with_payload": True,
            "with_vectors": True,
        }
        if filter is not None:
            kwargs["scroll_filter"] = self.compile_filter(filter)

        records, next_offset = await self._call(collection, client.scroll(**kwargs))
        entries = [
            VectorEntry(
                id=str(r.id),
                vector=_dense(r.vector) or [],
                metadata=dict(r.payload) if r.payload else {},
            )
            for r in records
        ]
        return ScrollPage(entries=entries, next_offset=next_offset)

    async def connect(self) -> None:
        """Create the async Qdrant client."""
        self._client = AsyncQdrantClient(
            url=self._url,
            api_key=self._api_key,
            timeout=int(self._timeout),
            prefer_grpc=self._prefer_grpc,
        )

    async def close(self) -> None:
        """Close the async client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._distances.clear()

    # ------------------------------------------------------------------
    # SupportsMetadataFilter
    # ------------------------------------------------------------------

    def compile_filter(self, expr: FilterExpression) -> Any:
        """Compile a FilterExpression to a ``qdrant_client.models.Filter``."""
        return models.Filter.model_validate(compile_qdrant(expr))

    # ------------------------------------------------------------------
    # SupportsCollectionLifecycle
    # ------------------------------------------------------------------

    async def create_collection(self, config: CollectionConfig) -> None:
        """Create a collection with the given vector size, distance and HNSW params."""
        client = self._require_client()
        if await self._call(config.name, client.collection_exists(collection_name=config.name)):
            msg = f"Collection {config.name!r} already exists"
            raise ConflictError(msg)

        await self._call(
            config.name,
            client.create_collection(
                collection_name=config.name,
                vectors_config=models.VectorParams(
                    size=config.dimension,
                    distance=models.Distance(config.distance.value),
                ),
                hnsw_config=models.HnswConfigDiff(
                    m=config.hnsw.m,
                    ef_construct=config.hnsw.ef_construct,
                ),
            ),
            write=True,
        )
        self._distances[config.name] = config.distance
        logger.info(
            "Created Qdrant collection %s (size=%d, distance=%s)",
            config.name,
            config.dimension,
            config.distance.value,
        )

    async def delete_collection(self, name: str) -> None:
        """Delete a Qdrant collection."""
        client = self._require_client()
        if not await self._call(name, client.collection_exists(collection_name=name)):
            msg = f"Collection {name!r} does not exist"
            raise NotFoundError(msg)
        await self._call(name, client.delete_collection(collection_name=name), write=True)
        self._distances.pop(name, None)

    async def get_collection(self, name: str) -> CollectionInfo | None:
        """Describe a collection, or ``None`` if it does not exist."""
        client = self._require_client()
        try:
            info = await self._call(name, client.get_collection(collection_name=name))
        except NotFoundError:
            return None

        params = info.config.params.vectors
        distance = Distance.parse(_enum_value(params.distance))
        self._distances[name] = distance
        hnsw = info.config.hnsw_config
        return CollectionInfo(
            name=name,
            dimension=int(params.size),
            distance=distance,
            point_count=int(info.points_count or 0),
            hnsw=HnswParams(m=hnsw.m, ef_construct=hnsw.ef_construct) if hnsw else None,
        )

    async def list_collections(self) -> list[CollectionInfo]:
        """List all collections with their stats."""
        client = self._require_client()
        resp = await self._call("*", client.get_collections())
        infos: list[CollectionInfo] = []
        for desc in sorted(resp.collections, key=lambda c: c.name):
            info = await self.get_collection(desc.name)
            if info is not None:
                infos.append(info)
        return infos

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_client(self) -> Any:
        """Return the client, raising if not connected."""
        if self._client is None:
            msg = "Not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    async def _distance_of(self, collection: str) -> Distance:
        distance = self._distances.get(collection)
        if distance is None:
            info = await self.get_collection(collection)
            if info is None:
                msg = f"Collection {collection!r} does not exist"
                raise NotFoundError(msg)
            distance = info.distance
        return distance

    async def _call(
        self, collection: str, awaitable: Awaitable[Any], *, write: bool = False
    ) -> Any:
        """Await a client call, translating SDK errors to catalogsync errors."""
        try:
            return await awaitable
        except UnexpectedResponse as exc:
            status = exc.status_code or 0
            if status == 404:
                msg = f"Collection {collection!r} does not exist"
                raise NotFoundError(msg) from exc
            if status >= 500 or status == 429:
                msg = f"Qdrant returned {status} for {collection!r}"
                raise StoreUnavailableError(msg) from exc
            if write and 400 <= status < 500:
                msg = f"Qdrant rejected write to {collection!r}: {exc.content!r}"
                raise PointRejectedError(msg) from exc
            msg = f"Qdrant request on {collection!r} failed with {status}"
            raise StoreError(msg) from exc
        except (ResponseHandlingException, TimeoutError, ConnectionError) as exc:
            msg = f"Qdrant unreachable at {self._url}: {exc}"
            raise StoreUnavailableError(msg) from exc


def _dense(vector: Any) -> list[float] | None:
    """Return the unnamed dense vector of a record, if any."""
    if vector is None:
        return None
    if isinstance(vector, dict):
        vector = vector.get("") or next(iter(vector.values()), None)
    return [float(x) for x in vector] if vector is not None else None


def _enum_value(value: Any) -> str:
    return getattr(value, "value", value)
