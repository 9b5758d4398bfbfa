"""Embedding collaborators: text in, fixed-dimension vector out.

Two implementations share the Embedder protocol:
- OpenAIEmbeddingService: hosted text-embedding-3 models via AsyncOpenAI,
  with exponential backoff on rate limits.
- FastEmbedService: a local ONNX model via fastembed, run off the event
  loop so inference never blocks readers.

Every vector stored in the similarity index must have the configured
dimension; both services check it before returning.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog
from openai import AsyncOpenAI, RateLimitError

from src.brain.config import BrainConfig
from src.brain.errors import ExtractionError

logger = structlog.get_logger(__name__)


class Embedder(Protocol):
    """Minimal interface for embedding generation."""

    @property
    def dimensions(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def _check_dimensions(vectors: list[list[float]], expected: int) -> list[list[float]]:
    for vector in vectors:
        if len(vector) != expected:
            raise ExtractionError(
                f"Embedding has {len(vector)} dimensions, expected {expected}"
            )
    return vectors


class OpenAIEmbeddingService:
    """Dense embeddings from the OpenAI embeddings API.

    Args:
        config: Brain configuration with API key and model settings.
    """

    def __init__(self, config: BrainConfig) -> None:
        self._openai = AsyncOpenAI(api_key=config.openai_api_key)
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch in a single API request.

        Args:
            texts: Input texts to embed.

        Returns:
            One vector per input text, in order.

        Raises:
            RateLimitError: If all retries are exhausted.
            ExtractionError: If the API returns vectors of the wrong size.
        """
        if not texts:
            return []
        vectors = await self._embed_dense(texts)
        return _check_dimensions(vectors, self._dimensions)

    async def _embed_dense(
        self, texts: list[str], max_retries: int = 3
    ) -> list[list[float]]:
        for attempt in range(max_retries):
            try:
                response = await self._openai.embeddings.create(
                    input=texts,
                    model=self._model,
                    dimensions=self._dimensions,
                )
                return [item.embedding for item in response.data]
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise
                wait_time = 2**attempt
                logger.warning(
                    "embeddings.rate_limited",
                    wait_seconds=wait_time,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                )
                await asyncio.sleep(wait_time)

        raise RuntimeError("Exhausted retries for dense embedding")  # pragma: no cover


class FastEmbedService:
    """Local embeddings from a fastembed TextEmbedding model.

    The model is loaded lazily on first use (heavy import, downloads
    weights once) and inference runs in a worker thread.

    Args:
        config: Brain configuration with model name and dimensions.
    """

    def __init__(self, config: BrainConfig) -> None:
        self._model_name = config.embedding_model
        self._dimensions = config.embedding_dimensions
        self._model: Any = None

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_model(self) -> Any:
        if self._model is None:
            from fastembed import TextEmbedding

            self._model = TextEmbedding(model_name=self._model_name)
            logger.info("embeddings.model_loaded", model=self._model_name)
        return self._model

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        model = self._get_model()
        return [vector.tolist() for vector in model.embed(texts)]

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = await asyncio.to_thread(self._embed_sync, texts)
        return _check_dimensions(vectors, self._dimensions)


def build_embedder(config: BrainConfig) -> Embedder:
    """Create the embedder selected by config.embedding_provider."""
    if config.embedding_provider == "openai":
        return OpenAIEmbeddingService(config)
    return FastEmbedService(config)
