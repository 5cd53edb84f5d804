"""Tests for embedding providers."""

from __future__ import annotations

import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from catalogsync.exceptions import (
    AuthenticationError,
    EmbeddingError,
    EmbeddingUnavailableError,
)
from catalogsync.search.protocols import EmbeddingProvider

openai = pytest.importorskip("openai")
httpx = pytest.importorskip("httpx")

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _status_error(cls, status: int):
    return cls(f"status {status}", response=httpx.Response(status, request=_REQUEST), body=None)


# ==================================================================
# OpenAI provider
# ==================================================================


class TestOpenAIEmbedding:
    def _make_provider(self, **kwargs):
        from catalogsync.search.providers.openai import OpenAIEmbedding

        return OpenAIEmbedding(api_key="sk-test-key", **kwargs)

    def _mock_response(self, vectors: list[list[float]], order: list[int] | None = None):
        """Build a mock CreateEmbeddingResponse."""
        mock_resp = MagicMock()
        mock_data = []
        for i in order or range(len(vectors)):
            item = MagicMock()
            item.embedding = vectors[i]
            item.index = i
            mock_data.append(item)
        mock_resp.data = mock_data
        return mock_resp

    async def test_embed_single_text(self):
        provider = self._make_provider()
        expected = [0.1, 0.2, 0.3]
        provider._client.embeddings.create = AsyncMock(
            return_value=self._mock_response([expected])
        )

        result = await provider.embed("Taladro percutor | ACME")

        assert result == expected
        call_kwargs = provider._client.embeddings.create.call_args[1]
        assert call_kwargs["input"] == ["Taladro percutor | ACME"]
        assert call_kwargs["model"] == "text-embedding-3-large"
        assert "dimensions" not in call_kwargs

    async def test_empty_text_rejected_without_call(self):
        provider = self._make_provider()
        provider._client.embeddings.create = AsyncMock()

        with pytest.raises(EmbeddingError):
            await provider.embed("   ")
        provider._client.embeddings.create.assert_not_called()

    async def test_batch_chunking(self):
        provider = self._make_provider(batch_size=2)
        provider._client.embeddings.create = AsyncMock(
            side_effect=[
                self._mock_response([[1.0], [2.0]]),
                self._mock_response([[3.0]]),
            ]
        )

        result = await provider.embed_batch(["a", "b", "c"])

        assert result == [[1.0], [2.0], [3.0]]
        assert provider._client.embeddings.create.call_count == 2

    async def test_embed_batch_empty(self):
        provider = self._make_provider()
        assert await provider.embed_batch([]) == []

    async def test_response_sorted_by_index(self):
        provider = self._make_provider()
        provider._client.embeddings.create = AsyncMock(
            return_value=self._mock_response([[0.1], [0.2]], order=[1, 0])
        )
        assert await provider.embed_batch(["a", "b"]) == [[0.1], [0.2]]

    async def test_dimensions_passed_to_api(self):
        provider = self._make_provider(dimensions=256)
        provider._client.embeddings.create = AsyncMock(
            return_value=self._mock_response([[0.0] * 256])
        )
        await provider.embed("hello")
        assert provider._client.embeddings.create.call_args[1]["dimensions"] == 256

    @pytest.mark.parametrize(
        ("model", "dims"),
        [
            ("text-embedding-3-small", 1536),
            ("text-embedding-3-large", 3072),
            ("text-embedding-ada-002", 1536),
        ],
    )
    def test_default_dimensions(self, model, dims):
        assert self._make_provider(model=model).dimensions == dims

    def test_unknown_model_dimensions_raise(self):
        with pytest.raises(ValueError):
            _ = self._make_provider(model="custom-model").dimensions

    def test_api_key_required(self):
        from catalogsync.search.providers.openai import OpenAIEmbedding

        with patch.dict("os.environ", {}, clear=True), pytest.raises(ValueError, match="API key"):
            OpenAIEmbedding()

    def test_api_key_from_env(self):
        from catalogsync.search.providers.openai import OpenAIEmbedding

        with patch.dict("os.environ", {"OPENAI_API_KEY": "sk-from-env"}):
            assert OpenAIEmbedding().model_name == "text-embedding-3-large"

    def test_isinstance_embedding_provider(self):
        assert isinstance(self._make_provider(), EmbeddingProvider)

    async def test_close(self):
        provider = self._make_provider()
        provider._client.close = AsyncMock()
        await provider.close()
        provider._client.close.assert_awaited_once()

    # -- error mapping --

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (lambda: _status_error(openai.AuthenticationError, 401), AuthenticationError),
            (lambda: _status_error(openai.PermissionDeniedError, 403), AuthenticationError),
            (lambda: _status_error(openai.RateLimitError, 429), EmbeddingUnavailableError),
            (lambda: _status_error(openai.InternalServerError, 503), EmbeddingUnavailableError),
            (lambda: openai.APITimeoutError(request=_REQUEST), EmbeddingUnavailableError),
            (lambda: _status_error(openai.BadRequestError, 400), EmbeddingError),
        ],
    )
    async def test_error_mapping(self, error, expected):
        provider = self._make_provider()
        provider._client.embeddings.create = AsyncMock(side_effect=error())

        with pytest.raises(expected):
            await provider.embed("hello")

    async def test_bad_request_is_not_transient(self):
        provider = self._make_provider()
        provider._client.embeddings.create = AsyncMock(
            side_effect=_status_error(openai.BadRequestError, 400)
        )
        with pytest.raises(EmbeddingError) as info:
            await provider.embed("hello")
        assert not isinstance(info.value, EmbeddingUnavailableError)


# ==================================================================
# SentenceTransformer provider
# ==================================================================


class TestSentenceTransformerEmbedding:
    def _make_provider(self, model=None):
        from catalogsync.search.providers.sentence_transformers import (
            SentenceTransformerEmbedding,
        )

        p = SentenceTransformerEmbedding.__new__(SentenceTransformerEmbedding)
        p._model_name = "test-model"
        p._device = None
        p._batch_size = 32
        p._model = model
        p._load_lock = threading.Lock()
        return p

    def test_model_name(self):
        assert self._make_provider().model_name == "test-model"

    def test_isinstance_embedding_provider(self):
        assert isinstance(self._make_provider(), EmbeddingProvider)

    async def test_embed_uses_thread_pool(self):
        import numpy as np

        model = MagicMock()
        model.encode = MagicMock(return_value=np.array([[0.1, 0.2]]))
        p = self._make_provider(model)

        vec = await p.embed("hello")
        assert vec == pytest.approx([0.1, 0.2])
        assert model.encode.call_args[1]["normalize_embeddings"] is True

    async def test_embed_batch(self):
        import numpy as np

        model = MagicMock()
        model.encode = MagicMock(return_value=np.array([[0.1, 0.2], [0.3, 0.4]]))
        p = self._make_provider(model)

        assert len(await p.embed_batch(["hello", "world"])) == 2
        assert await p.embed_batch([]) == []

    async def test_empty_text_rejected(self):
        p = self._make_provider(MagicMock())
        with pytest.raises(EmbeddingError):
            await p.embed("")

    def test_dimensions_from_model(self):
        model = MagicMock()
        model.get_sentence_embedding_dimension = MagicMock(return_value=384)
        assert self._make_provider(model).dimensions == 384
