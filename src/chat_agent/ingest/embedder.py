"""Embedding abstractions, provider adapters and the retrying async front."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from langchain_core.embeddings import Embeddings
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chat_agent.config import IndexConfig, Settings
from chat_agent.errors import EmbeddingUnavailableError

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Embedder interface used by the similarity index."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used when no embedding provider is configured and throughout the tests.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts any LangChain `Embeddings` implementation (OpenAI, Gemini, ...)."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self._embeddings.embed_documents(texts)]

    def embed_query(self, text: str) -> list[float]:
        return list(self._embeddings.embed_query(text))


class RetryingEmbedder:
    """Async front for an `Embedder` with timeout and exponential backoff.

    Each call runs the blocking embedder in a worker thread, bounded by
    `embed_timeout_seconds`. Transient failures are retried up to
    `embed_max_attempts` times. When every attempt fails, `embed` returns
    `None` so callers skip the chunk or the query instead of failing.
    """

    def __init__(
        self,
        embedder: Embedder,
        config: IndexConfig | None = None,
        *,
        sleep: Any = asyncio.sleep,
    ) -> None:
        self.embedder = embedder
        self.config = config or IndexConfig()
        self._sleep = sleep

    async def embed(self, text: str) -> list[float] | None:
        try:
            return await self.embed_or_raise(text)
        except EmbeddingUnavailableError as exc:
            logger.warning("Embedding unavailable: %s", exc)
            return None

    async def embed_or_raise(self, text: str) -> list[float]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.embed_max_attempts),
            wait=wait_exponential(
                multiplier=self.config.embed_backoff_seconds,
                max=self.config.embed_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(
                        asyncio.to_thread(self.embedder.embed_query, text),
                        timeout=self.config.embed_timeout_seconds,
                    )
        except Exception as exc:
            raise EmbeddingUnavailableError(
                f"embedding failed after {self.config.embed_max_attempts} attempts: {exc!r}"
            ) from exc
        raise EmbeddingUnavailableError("embedding produced no result")


def create_embedder(settings: Settings) -> Embedder:
    """Pick the OpenAI embedding model when a key is configured, else hashing."""

    if not settings.openai_api_key:
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)
    )
