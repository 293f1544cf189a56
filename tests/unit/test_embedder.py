import asyncio
import time

import pytest

from chat_agent.config import IndexConfig, Settings
from chat_agent.errors import EmbeddingUnavailableError
from chat_agent.ingest.embedder import Embedder, HashingEmbedder, RetryingEmbedder, create_embedder

FAST = IndexConfig(embed_max_attempts=3, embed_backoff_seconds=0.0, embed_timeout_seconds=1.0)


class FlakyEmbedder(Embedder):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("temporary failure")
        return [1.0, 0.0]


class SlowEmbedder(Embedder):
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        time.sleep(0.3)
        return [1.0]


def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimension=64)

    first = embedder.embed_query("Refund policy details")
    second = embedder.embed_documents(["refund policy details"])[0]

    assert first == second
    assert len(first) == 64
    assert abs(sum(value * value for value in first) - 1.0) < 1e-9
    assert embedder.embed_query("   ") == [0.0] * 64


def test_retrying_embedder_recovers_from_transient_failures() -> None:
    flaky = FlakyEmbedder(failures=2)

    vector = asyncio.run(RetryingEmbedder(flaky, FAST).embed("hello"))

    assert vector == [1.0, 0.0]
    assert flaky.calls == 3


def test_retrying_embedder_gives_up_after_max_attempts() -> None:
    flaky = FlakyEmbedder(failures=10)
    embedder = RetryingEmbedder(flaky, FAST)

    assert asyncio.run(embedder.embed("hello")) is None
    assert flaky.calls == 3
    with pytest.raises(EmbeddingUnavailableError):
        asyncio.run(embedder.embed_or_raise("hello"))


def test_retrying_embedder_times_out_slow_calls() -> None:
    config = IndexConfig(
        embed_max_attempts=1, embed_backoff_seconds=0.0, embed_timeout_seconds=0.05
    )

    assert asyncio.run(RetryingEmbedder(SlowEmbedder(), config).embed("hello")) is None


def test_create_embedder_without_key_uses_hashing() -> None:
    assert isinstance(create_embedder(Settings(openai_api_key=None)), HashingEmbedder)
