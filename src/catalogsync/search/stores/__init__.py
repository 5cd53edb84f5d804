"""Vector stores — VectorStore protocol implementations."""

from catalogsync.search.stores.local import LocalVectorStore

__all__ = [
    "LocalVectorStore",
]

# Optional stores: import-guarded, available only when deps are installed.
try:
    from catalogsync.search.stores.qdrant import QdrantVectorStore

    __all__.append("QdrantVectorStore")
except ImportError:  # pragma: no cover
    pass
