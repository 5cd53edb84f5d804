"""Vector layer protocols — async-first interfaces for embedding and vector storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from catalogsync.search.filters import FilterExpression
    from catalogsync.search.types import (
        CollectionConfig,
        CollectionInfo,
        DeleteResult,
        ScrollPage,
        UpsertResult,
        VectorEntry,
        VectorSearchResult,
    )


# ------------------------------------------------------------------
# Core protocols
# ------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Async-first protocol for text-to-vector embedding.

    Implementations convert text into fixed-dimension float vectors
    suitable for similarity search.  Failures for a single input raise
    :class:`~catalogsync.exceptions.EmbeddingError`; rejected credentials
    raise :class:`~catalogsync.exceptions.AuthenticationError`.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Async-first protocol for point storage and search in named collections.

    Unreachable stores raise :class:`~catalogsync.exceptions.StoreUnavailableError`;
    requests the store refuses raise
    :class:`~catalogsync.exceptions.PointRejectedError`.
    """

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> UpsertResult:
        """Insert or overwrite points keyed by their IDs."""
        ...

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,
        score_threshold: float | None = None,
        include_vectors: bool = False,
    ) -> list[VectorSearchResult]:
        """Return up to *k* nearest points, most similar first."""
        ...

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete points by their IDs."""
        ...

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorEntry | None]:
        """Fetch points by their IDs.  Missing IDs return ``None``."""
        ...

    async def scroll(
        self,
        collection: str,
        *,
        filter: FilterExpression | None = None,
        limit: int = 256,
        offset: Any = None,
    ) -> ScrollPage:
        """Page through every point of *collection*, vectors included."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...


# ------------------------------------------------------------------
# Capability protocols: checked via isinstance() at runtime
# ------------------------------------------------------------------


@runtime_checkable
class SupportsCollectionLifecycle(Protocol):
    """Store supports programmatic collection create/delete/inspect."""

    async def create_collection(self, config: CollectionConfig) -> None:
        """Create a new collection."""
        ...

    async def delete_collection(self, name: str) -> None:
        """Delete a collection and all its points."""
        ...

    async def get_collection(self, name: str) -> CollectionInfo | None:
        """Describe *name*, or ``None`` if it does not exist."""
        ...

    async def list_collections(self) -> list[CollectionInfo]:
        """List all collections."""
        ...


@runtime_checkable
class SupportsMetadataFilter(Protocol):
    """Store compiles provider-agnostic filter expressions to its native format."""

    def compile_filter(self, expr: FilterExpression) -> Any:
        """Compile a ``FilterExpression`` to the store's native filter format."""
        ...
