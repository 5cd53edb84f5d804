"""Embedding providers — protocol and implementations."""

from catalogsync.search.protocols import EmbeddingProvider

__all__ = [
    "EmbeddingProvider",
]

# Optional providers: import-guarded, available only when deps are installed.
try:
    from catalogsync.search.providers.openai import OpenAIEmbedding

    __all__.append("OpenAIEmbedding")
except ImportError:  # pragma: no cover
    pass

try:
    from catalogsync.search.providers.sentence_transformers import SentenceTransformerEmbedding

    __all__.append("SentenceTransformerEmbedding")
except ImportError:  # pragma: no cover
    pass
