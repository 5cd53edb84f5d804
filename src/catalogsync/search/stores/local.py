"""LocalVectorStore — in-process usearch HNSW vector store with named collections."""

from __future__ import annotations

import json
import math
import threading
from pathlib import Path
from typing import Any

import numpy as np
from usearch.index import Index

from catalogsync.exceptions import ConflictError, NotFoundError
from catalogsync.search.filters import FilterExpression, evaluate
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

_MANIFEST_FILE = "collections.json"
_INDEX_SUFFIX = ".usearch"
_META_SUFFIX = ".meta.json"

_USEARCH_METRICS: dict[Distance, str] = {
    Distance.COSINE: "cos",
    Distance.EUCLIDEAN: "l2sq",
    Distance.DOT: "ip",
}


def _score(distance: Distance, raw: float) -> float:
    """Convert a usearch distance to a "higher is more similar" score."""
    if distance == Distance.EUCLIDEAN:
        return 1.0 / (1.0 + math.sqrt(max(raw, 0.0)))
    # cos and ip distances are both 1 - similarity
    return 1.0 - raw


class _Collection:
    """One usearch index plus its id/payload bookkeeping."""

    def __init__(self, config: CollectionConfig) -> None:
        self.config = config
        self.index = Index(
            ndim=config.dimension,
            metric=_USEARCH_METRICS[config.distance],
            dtype="f32",
            connectivity=config.hnsw.m,
            expansion_add=config.hnsw.ef_construct,
        )
        self.next_key: int = 0
        # key → {"id", "vector", "payload"}
        self.key_to_meta: dict[int, dict[str, Any]] = {}
        # point id → usearch key
        self.id_to_key: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.key_to_meta)


class LocalVectorStore:
    """In-process vector store backed by one usearch HNSW index per collection.

    Implements ``VectorStore`` and ``SupportsCollectionLifecycle`` for local
    development and tests.  Payload filters are evaluated in-process, so every
    :mod:`~catalogsync.search.filters` operator is supported.

    When *data_dir* is given, :meth:`connect` loads any saved collections and
    :meth:`close` saves them back.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(self, *, data_dir: str | Path | None = None) -> None:
        self._data_dir = Path(data_dir) if data_dir else None
        self._collections: dict[str, _Collection] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> UpsertResult:
        """Insert or overwrite points.  Wrong-sized vectors are refused per point."""
        coll = self._require(collection)

        count = 0
        failed_ids: list[str] = []
        errors: list[str] = []
        for entry in entries:
            if len(entry.vector) != coll.config.dimension:
                failed_ids.append(entry.id)
                errors.append(
                    f"vector has {len(entry.vector)} dimensions, "
                    f"collection expects {coll.config.dimension}"
                )
                continue

            if entry.id in coll.id_to_key:
                self._remove_by_id(coll, entry.id)

            vector = np.array(entry.vector, dtype=np.float32)
            key = coll.next_key
            coll.next_key += 1

            with self._lock:
                coll.index.add(key, vector)

            coll.key_to_meta[key] = {
                "id": entry.id,
                "vector": list(entry.vector),
                "payload": dict(entry.metadata),
            }
            coll.id_to_key[entry.id] = key
            count += 1

        return UpsertResult(upserted_count=count, failed_ids=failed_ids, errors=errors)

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
        """Search for the *k* nearest points."""
        coll = self._require(collection)
        if len(coll) == 0 or k <= 0:
            return []

        query = np.array(vector, dtype=np.float32)

        # Filtered searches scan everything so matches are not lost to the cut-off
        effective_k = len(coll) if filter is not None else min(k, len(coll))

        with self._lock:
            matches = coll.index.search(query, effective_k)

        results: list[VectorSearchResult] = []
        for match_key, distance in zip(
            matches.keys.tolist(), matches.distances.tolist(), strict=True
        ):
            meta = coll.key_to_meta.get(int(match_key))
            if meta is None:
                continue

            payload = _payload(meta)
            if filter is not None and not evaluate(filter, payload):
                continue

            score = _score(coll.config.distance, float(distance))
            if score_threshold is not None and score < score_threshold:
                continue

            results.append(
                VectorSearchResult(
                    id=meta["id"],
                    score=score,
                    metadata=payload,
                    vector=list(meta["vector"]) if include_vectors else None,
                )
            )

        results.sort(key=lambda r: (-r.score, r.id))
        return results[:k]

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete points by their IDs."""
        coll = self._require(collection)
        count = sum(1 for entry_id in ids if self._remove_by_id(coll, entry_id))
        return DeleteResult(deleted_count=count)

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorEntry | None]:
        """Fetch points by their IDs."""
        coll = self._require(collection)

        results: list[VectorEntry | None] = []
        for entry_id in ids:
            key = coll.id_to_key.get(entry_id)
            meta = coll.key_to_meta.get(key) if key is not None else None
            if meta is None:
                results.append(None)
                continue
            results.append(
                VectorEntry(id=meta["id"], vector=list(meta["vector"]), metadata=_payload(meta))
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
        """Page through points in insertion order.  *offset* is the next usearch key."""
        coll = self._require(collection)
        start = int(offset) if offset is not None else 0

        entries: list[VectorEntry] = []
        for key in sorted(coll.key_to_meta):
            if key < start:
                continue
            meta = coll.key_to_meta[key]
            payload = _payload(meta)
            if filter is not None and not evaluate(filter, payload):
                continue
            if len(entries) >= limit:
                return ScrollPage(entries=entries, next_offset=key)
            entries.append(
                VectorEntry(id=meta["id"], vector=list(meta["vector"]), metadata=payload)
            )
        return ScrollPage(entries=entries, next_offset=None)

    async def connect(self) -> None:
        """Load saved collections from *data_dir*, if configured."""
        if self._data_dir is not None and (self._data_dir / _MANIFEST_FILE).exists():
            self.load(self._data_dir)

    async def close(self) -> None:
        """Save collections to *data_dir*, if configured."""
        if self._data_dir is not None:
            self.save(self._data_dir)

    # ------------------------------------------------------------------
    # SupportsCollectionLifecycle
    # ------------------------------------------------------------------

    async def create_collection(self, config: CollectionConfig) -> None:
        """Create an empty collection."""
        if config.name in self._collections:
            msg = f"Collection {config.name!r} already exists"
            raise ConflictError(msg)
        self._collections[config.name] = _Collection(config)

    async def delete_collection(self, name: str) -> None:
        """Drop a collection and all of its points."""
        if self._collections.pop(name, None) is None:
            msg = f"Collection {name!r} does not exist"
            raise NotFoundError(msg)

    async def get_collection(self, name: str) -> CollectionInfo | None:
        """Describe *name*, or ``None`` if it does not exist."""
        coll = self._collections.get(name)
        if coll is None:
            return None
        return CollectionInfo(
            name=name,
            dimension=coll.config.dimension,
            distance=coll.config.distance,
            point_count=len(coll),
            hnsw=coll.config.hnsw,
        )

    async def list_collections(self) -> list[CollectionInfo]:
        """List all collections, sorted by name."""
        infos = [await self.get_collection(name) for name in sorted(self._collections)]
        return [info for info in infos if info is not None]

    # ------------------------------------------------------------------
    # SupportsMetadataFilter
    # ------------------------------------------------------------------

    def compile_filter(self, expr: FilterExpression) -> FilterExpression:
        """Filters are evaluated in-process, so the AST is the native format."""
        return expr

    # ------------------------------------------------------------------
    # Local-specific methods
    # ------------------------------------------------------------------

    def has(self, collection: str, entry_id: str) -> bool:
        """Return whether *entry_id* is present in *collection*."""
        coll = self._collections.get(collection)
        return coll is not None and entry_id in coll.id_to_key

    def count(self, collection: str) -> int:
        """Return the number of points in *collection*."""
        return len(self._require(collection))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str | Path) -> None:
        """Persist every collection (index + payload sidecar) to *directory*."""
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)

        manifest: dict[str, Any] = {}
        for name, coll in self._collections.items():
            manifest[name] = {
                "dimension": coll.config.dimension,
                "distance": coll.config.distance.value,
                "hnsw_m": coll.config.hnsw.m,
                "hnsw_ef_construct": coll.config.hnsw.ef_construct,
                "next_key": coll.next_key,
            }
            with self._lock:
                coll.index.save(str(dir_path / f"{name}{_INDEX_SUFFIX}"))

            # Vectors live in the usearch file; keep them out of the sidecar
            sidecar = {
                str(key): {"id": meta["id"], "payload": meta["payload"]}
                for key, meta in coll.key_to_meta.items()
            }
            with (dir_path / f"{name}{_META_SUFFIX}").open("w") as f:
                json.dump(sidecar, f)

        with (dir_path / _MANIFEST_FILE).open("w") as f:
            json.dump(manifest, f)

    def load(self, directory: str | Path) -> None:
        """Replace in-memory collections with those saved in *directory*."""
        dir_path = Path(directory)
        with (dir_path / _MANIFEST_FILE).open() as f:
            manifest: dict[str, dict[str, Any]] = json.load(f)

        self._collections = {}
        for name, spec in manifest.items():
            config = CollectionConfig(
                name=name,
                dimension=spec["dimension"],
                distance=Distance.parse(spec["distance"]),
                hnsw=HnswParams(m=spec["hnsw_m"], ef_construct=spec["hnsw_ef_construct"]),
            )
            coll = _Collection(config)
            with self._lock:
                coll.index.load(str(dir_path / f"{name}{_INDEX_SUFFIX}"))
            coll.next_key = spec["next_key"]

            with (dir_path / f"{name}{_META_SUFFIX}").open() as f:
                raw_meta: dict[str, dict[str, Any]] = json.load(f)
            for k_str, meta in raw_meta.items():
                key = int(k_str)
                meta["vector"] = coll.index.get(key).tolist()
                coll.key_to_meta[key] = meta
                coll.id_to_key[meta["id"]] = key
            self._collections[name] = coll

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require(self, collection: str) -> _Collection:
        coll = self._collections.get(collection)
        if coll is None:
            msg = f"Collection {collection!r} does not exist"
            raise NotFoundError(msg)
        return coll

    def _remove_by_id(self, coll: _Collection, entry_id: str) -> bool:
        """Remove a single point by ID. Returns True if found."""
        key = coll.id_to_key.pop(entry_id, None)
        if key is None:
            return False
        coll.key_to_meta.pop(key, None)
        with self._lock:
            coll.index.remove(key)
        return True


def _payload(meta: dict[str, Any]) -> dict[str, Any]:
    return dict(meta["payload"])
