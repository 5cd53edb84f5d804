"""Vector layer data types — value objects for points, results, and collection configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ------------------------------------------------------------------
# Distance metrics
# ------------------------------------------------------------------


class Distance(Enum):
    """Distance metric of a collection (values follow Qdrant's naming)."""

    COSINE = "Cosine"
    EUCLIDEAN = "Euclid"
    DOT = "Dot"

    @classmethod
    def parse(cls, value: str | Distance) -> Distance:
        """Accept ``Cosine``/``cosine``/``cos``, ``Euclid``/``euclidean``/``l2``, ``Dot``/``ip``."""
        if isinstance(value, Distance):
            return value
        normalized = value.strip().lower()
        aliases = {
            "cosine": cls.COSINE,
            "cos": cls.COSINE,
            "euclid": cls.EUCLIDEAN,
            "euclidean": cls.EUCLIDEAN,
            "l2": cls.EUCLIDEAN,
            "dot": cls.DOT,
            "dotproduct": cls.DOT,
            "ip": cls.DOT,
        }
        try:
            return aliases[normalized]
        except KeyError:
            msg = f"Unknown distance metric: {value!r}"
            raise ValueError(msg) from None


# ------------------------------------------------------------------
# Vector data
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorEntry:
    """A point: vector with its ID and payload, ready for storage.

    Attributes:
        id: Point identifier (a uuid5 derived from the source record id).
        vector: Embedding vector.
        metadata: Payload stored alongside the vector.
    """

    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorSearchResult:
    """A single result from a VectorStore search.

    Attributes:
        id: Identifier of the matched point.
        score: Similarity score (higher is more similar).
        metadata: Payload stored with the vector.
        vector: The vector itself, if requested.
    """

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    vector: list[float] | None = None


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Result of a vector upsert operation.

    Attributes:
        upserted_count: Number of points successfully upserted.
        failed_ids: IDs of points the store refused.
        errors: Error messages for the refused points, aligned with ``failed_ids``.
    """

    upserted_count: int
    failed_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Result of a vector delete operation."""

    deleted_count: int


@dataclass(frozen=True, slots=True)
class ScrollPage:
    """One page of a full-collection scan.

    Attributes:
        entries: Points on this page, vectors included.
        next_offset: Opaque cursor for the next page, ``None`` when exhausted.
    """

    entries: list[VectorEntry]
    next_offset: Any = None


# ------------------------------------------------------------------
# Collection configuration
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HnswParams:
    """HNSW graph parameters."""

    m: int = 16
    ef_construct: int = 100


@dataclass(frozen=True, slots=True)
class CollectionConfig:
    """Configuration for creating a vector collection.

    Attributes:
        name: Collection name.
        dimension: Vector dimensionality.
        distance: Distance metric.
        hnsw: HNSW index parameters.
    """

    name: str
    dimension: int
    distance: Distance = Distance.COSINE
    hnsw: HnswParams = field(default_factory=HnswParams)


@dataclass(frozen=True, slots=True)
class CollectionInfo:
    """Information about an existing collection, as reported by the store.

    Attributes:
        name: Collection name.
        dimension: Vector dimensionality.
        distance: Distance metric.
        point_count: Number of points in the collection.
        hnsw: HNSW parameters, when the store reports them.
    """

    name: str
    dimension: int
    distance: Distance
    point_count: int = 0
    hnsw: HnswParams | None = None
