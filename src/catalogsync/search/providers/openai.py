"""OpenAIEmbedding — product-text embeddings from the OpenAI Embeddings API."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from catalogsync.exceptions import AuthenticationError, EmbeddingError, EmbeddingUnavailableError

try:
    import openai
    from openai import AsyncOpenAI

    _HAS_OPENAI = True
except ImportError:  # pragma: no cover
    _HAS_OPENAI = False

if TYPE_CHECKING:
    from openai import AsyncOpenAI as AsyncOpenAIType

logger = logging.getLogger(__name__)

_NATIVE_SIZES: dict[str, int] = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}


def _translate(exc: Exception) -> EmbeddingError | AuthenticationError:
    """Map an SDK failure onto the sync error taxonomy."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthenticationError(f"OpenAI rejected the API key: {exc}")
    if isinstance(
        exc,
        (
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ),
    ):
        return EmbeddingUnavailableError(f"OpenAI embeddings unavailable: {exc}")
    return EmbeddingError(f"OpenAI embeddings failed: {exc}")


class OpenAIEmbedding:
    """Embeds catalog rows with an OpenAI embedding model.

    The default ``text-embedding-3-large`` produces 3072-dimensional
    vectors; pass *dimensions* to request shortened ones.  Batches are sent
    *batch_size* texts per request.  A rejected key aborts the job
    (:class:`AuthenticationError`), throttling and outages are retried
    (:class:`EmbeddingUnavailableError`), and any other API refusal fails
    only the rows involved (:class:`EmbeddingError`).

    Requires ``pip install catalogsync[openai]``.
    """

    def __init__(
        self,
        *,
        model: str = "text-embedding-3-large",
        dimensions: int | None = None,
        api_key: str | None = None,
        max_retries: int = 2,
        timeout: float = 60.0,
        batch_size: int = 512,
    ) -> None:
        if not _HAS_OPENAI:
            msg = (
                "openai is required for OpenAIEmbedding. "
                "Install it with: pip install catalogsync[openai]"
            )
            raise ImportError(msg)

        key = api_key or os.environ.get("OPENAI_API_KEY")
        if not key:
            msg = "No OpenAI API key provided. Pass api_key= or set OPENAI_API_KEY."
            raise ValueError(msg)
        if batch_size < 1:
            msg = f"batch_size must be at least 1, got {batch_size}"
            raise ValueError(msg)

        self._model = model
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._client: AsyncOpenAIType = AsyncOpenAI(
            api_key=key, max_retries=max_retries, timeout=timeout
        )

    async def embed(self, text: str) -> list[float]:
        """Embed one product text."""
        [vector] = await self._request([text])
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed product texts in request-sized slices, preserving order."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(await self._request(texts[start : start + self._batch_size]))
        return vectors

    @property
    def dimensions(self) -> int:
        if self._dimensions is not None:
            return self._dimensions
        try:
            return _NATIVE_SIZES[self._model]
        except KeyError:
            msg = f"Vector size of model {self._model!r} is unknown; pass dimensions="
            raise ValueError(msg) from None

    @property
    def model_name(self) -> str:
        return self._model

    async def close(self) -> None:
        await self._client.close()

    async def _request(self, texts: list[str]) -> list[list[float]]:
        for position, text in enumerate(texts):
            if not text.strip():
                msg = f"Cannot embed empty text (item {position})"
                raise EmbeddingError(msg)

        params: dict[str, Any] = {"input": texts, "model": self._model}
        if self._dimensions is not None:
            params["dimensions"] = self._dimensions

        try:
            response = await self._client.embeddings.create(**params)
        except openai.OpenAIError as exc:
            raise _translate(exc) from exc

        if len(response.data) != len(texts):
            msg = f"OpenAI returned {len(response.data)} embeddings for {len(texts)} texts"
            raise EmbeddingError(msg)
        logger.debug("Embedded %d texts with %s", len(texts), self._model)
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
