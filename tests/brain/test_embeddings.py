"""Tests for the embedding services with the remote/model calls mocked."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import RateLimitError

from src.brain.embeddings import FastEmbedService, OpenAIEmbeddingService, build_embedder
from src.brain.errors import ExtractionError


def _response(vectors: list[list[float]]) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=v) for v in vectors])


def _rate_limit() -> RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    return RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)


@pytest.fixture
def openai_config(config):
    return config.model_copy(
        update={"embedding_provider": "openai", "openai_api_key": "sk-test", "embedding_dimensions": 3}
    )


@pytest.fixture
def service(openai_config) -> OpenAIEmbeddingService:
    svc = OpenAIEmbeddingService(openai_config)
    svc._openai = MagicMock()
    svc._openai.embeddings.create = AsyncMock(return_value=_response([[0.1, 0.2, 0.3]]))
    return svc


class TestOpenAIEmbeddingService:
    async def test_embed_single(self, service):
        assert await service.embed("hello") == [0.1, 0.2, 0.3]
        kwargs = service._openai.embeddings.create.await_args.kwargs
        assert kwargs["input"] == ["hello"]
        assert kwargs["dimensions"] == 3

    async def test_empty_batch_skips_api(self, service):
        assert await service.embed_batch([]) == []
        service._openai.embeddings.create.assert_not_awaited()

    async def test_wrong_dimension_rejected(self, service):
        service._openai.embeddings.create.return_value = _response([[0.1, 0.2]])
        with pytest.raises(ExtractionError, match="expected 3"):
            await service.embed("hello")

    async def test_rate_limit_retries(self, service, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("src.brain.embeddings.asyncio.sleep", sleep)
        service._openai.embeddings.create.side_effect = [_rate_limit(), _response([[1.0, 0.0, 0.0]])]

        assert await service.embed("hello") == [1.0, 0.0, 0.0]
        sleep.assert_awaited_once_with(1)

    async def test_rate_limit_exhausted(self, service, monkeypatch):
        monkeypatch.setattr("src.brain.embeddings.asyncio.sleep", AsyncMock())
        service._openai.embeddings.create.side_effect = _rate_limit()

        with pytest.raises(RateLimitError):
            await service.embed("hello")
        assert service._openai.embeddings.create.await_count == 3


class _Vector(list):
    def tolist(self) -> list[float]:
        return list(self)


class TestFastEmbedService:
    async def test_embed_batch_in_thread(self, config):
        svc = FastEmbedService(config.model_copy(update={"embedding_dimensions": 2}))
        model = MagicMock()
        model.embed.side_effect = lambda texts: (_Vector([0.5, 0.5]) for _ in texts)
        svc._model = model

        assert await svc.embed_batch(["a", "b"]) == [[0.5, 0.5], [0.5, 0.5]]

    async def test_dimension_mismatch(self, config):
        svc = FastEmbedService(config.model_copy(update={"embedding_dimensions": 4}))
        model = MagicMock()
        model.embed.side_effect = lambda texts: (_Vector([0.5, 0.5]) for _ in texts)
        svc._model = model

        with pytest.raises(ExtractionError):
            await svc.embed("a")


class TestBuildEmbedder:
    def test_selects_openai(self, openai_config):
        assert isinstance(build_embedder(openai_config), OpenAIEmbeddingService)

    def test_defaults_to_fastembed(self, config):
        assert isinstance(build_embedder(config), FastEmbedService)
