"""SentenceTransformerEmbedding — on-host embeddings for catalogs without an API key."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

from catalogsync.exceptions import EmbeddingError

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    _HAS_SENTENCE_TRANSFORMERS = False

DEFAULT_MODEL = "paraphrase-multilingual-MiniLM-L12-v2"


class SentenceTransformerEmbedding:
    """Embeds product texts with a local ``sentence-transformers`` model.

    The default model is multilingual, which suits Spanish product
    descriptions.  The model loads on first use; encoding runs in a worker
    thread so the event loop keeps serving other jobs.  Vectors are
    L2-normalized, so cosine and dot-product collections rank identically.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        device: str | None = None,
        batch_size: int = 32,
    ) -> None:
        if not _HAS_SENTENCE_TRANSFORMERS:
            msg = (
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install it with: pip install catalogsync[search]"
            )
            raise ImportError(msg)
        self._model_name = model_name
        self._device = device
        self._batch_size = batch_size
        self._model: SentenceTransformer | None = None
        self._load_lock = threading.Lock()

    def _loaded(self) -> SentenceTransformer:
        with self._load_lock:
            if self._model is None:
                self._model = SentenceTransformer(self._model_name, device=self._device)
            return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        blank = [i for i, t in enumerate(texts) if not t.strip()]
        if blank:
            msg = f"Cannot embed empty text (items {blank})"
            raise EmbeddingError(msg)
        matrix: Any = self._loaded().encode(
            texts, batch_size=self._batch_size, normalize_embeddings=True
        )
        return [[float(x) for x in row] for row in matrix]

    async def embed(self, text: str) -> list[float]:
        [vector] = await asyncio.to_thread(self._encode, [text])
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)

    @property
    def dimensions(self) -> int:
        size = self._loaded().get_sentence_embedding_dimension()
        if size is None:
            msg = f"Model {self._model_name!r} does not report its vector size"
            raise RuntimeError(msg)
        return int(size)

    @property
    def model_name(self) -> str:
        return self._model_name
