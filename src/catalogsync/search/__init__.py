"""Vector layer: embedding providers, vector stores, payload filters."""

from catalogsync.search.filters import (
    FilterExpression,
    and_,
    eq,
    exists,
    from_mapping,
    gt,
    gte,
    in_,
    lt,
    lte,
    ne,
    not_in,
    or_,
)
from catalogsync.search.protocols import (
    EmbeddingProvider,
    SupportsCollectionLifecycle,
    SupportsMetadataFilter,
    VectorStore,
)
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

__all__ = [
    "CollectionConfig",
    "CollectionInfo",
    "DeleteResult",
    "Distance",
    "EmbeddingProvider",
    "FilterExpression",
    "HnswParams",
    "ScrollPage",
    "SupportsCollectionLifecycle",
    "SupportsMetadataFilter",
    "UpsertResult",
    "VectorEntry",
    "VectorSearchResult",
    "VectorStore",
    "and_",
    "eq",
    "exists",
    "from_mapping",
    "gt",
    "gte",
    "in_",
    "lt",
    "lte",
    "ne",
    "not_in",
    "or_",
]
