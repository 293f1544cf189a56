"""In-memory similarity index with brute-force cosine search."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from math import sqrt

from chat_agent.config import IndexConfig
from chat_agent.ingest.chunker import ParagraphChunker
from chat_agent.ingest.embedder import RetryingEmbedder
from chat_agent.types import Chunk, ParsedDocument, ScoredChunk

logger = logging.getLogger(__name__)

DocumentLoader = Callable[[], list[ParsedDocument]]


class SimilarityIndex:
    """Embeds paragraph chunks once and answers top-K cosine queries.

    Lifecycle:
    - The index starts empty and not ready. `build()` chunks the documents,
      embeds every chunk and then flips the index to ready. Chunks whose
      embedding fails are logged and skipped.
    - Exactly one build ever runs. Concurrent `build()` callers await the same
      task; later calls on a ready index return immediately.
    - `query()` never waits for a build. While the index is not ready it starts
      the build in the background (when a loader is configured) and answers
      with no results.
    - If the document loader raises, the index is marked ready and stays empty
      so that queries do not keep retrying the source.
    """

    def __init__(
        self,
        embedder: RetryingEmbedder,
        *,
        config: IndexConfig | None = None,
        chunker: ParagraphChunker | None = None,
        document_loader: DocumentLoader | None = None,
    ) -> None:
        self.config = config or IndexConfig()
        self._embedder = embedder
        self._chunker = chunker or ParagraphChunker(self.config.min_chunk_chars)
        self._document_loader = document_loader
        self._chunks: list[Chunk] = []
        self._dimension: int | None = None
        self._ready = False
        self._build_task: asyncio.Task[None] | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)

    async def build(self, documents: Sequence[ParsedDocument] | None = None) -> None:
        """Build the index from `documents`, or from the loader when omitted."""

        if self._ready:
            return
        task = self.start_build(documents)
        await asyncio.shield(task)

    def start_build(
        self, documents: Sequence[ParsedDocument] | None = None
    ) -> asyncio.Task[None]:
        """Schedule the single build task without awaiting it."""

        if self._build_task is None:
            self._build_task = asyncio.ensure_future(self._build(documents))
        return self._build_task

    async def query(
        self,
        text: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[str]:
        """Return the texts of the best matching chunks in score order."""

        return [item.chunk.text for item in await self.search(text, top_k, min_score)]

    async def search(
        self,
        text: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[ScoredChunk]:
        limit = top_k if top_k is not None else self.config.top_k
        threshold = self.config.min_score if min_score is None else min_score
        if limit <= 0:
            return []

        if not self._ready:
            if self._document_loader is not None:
                self.start_build()
            logger.info("Similarity index not ready; answering without context")
            return []
        if not self._chunks:
            return []

        query_vector = await self._embedder.embed(text)
        if query_vector is None:
            return []
        if self._dimension is not None and len(query_vector) != self._dimension:
            logger.warning(
                "Query embedding has %d dimensions, index has %d",
                len(query_vector),
                self._dimension,
            )
            return []

        ranked = sorted(
            (
                ScoredChunk(chunk=chunk, score=cosine_similarity(query_vector, chunk.embedding))
                for chunk in self._chunks
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        if threshold is not None:
            ranked = [item for item in ranked if item.score >= threshold]

        results = [
            ScoredChunk(chunk=item.chunk, score=item.score, rank=i + 1)
            for i, item in enumerate(ranked[:limit])
        ]
        logger.debug("Found %d relevant chunks for query %r", len(results), text[:80])
        return results

    async def _build(self, documents: Sequence[ParsedDocument] | None) -> None:
        try:
            if documents is None:
                documents = self._load_documents()
            for document in documents:
                for fragment in self._chunker.chunk_document(document):
                    vector = await self._embedder.embed(fragment.text)
                    if vector is None:
                        logger.warning(
                            "Skipping chunk %s from %s: embedding failed",
                            fragment.fragment_id,
                            fragment.source,
                        )
                        continue
                    if self._dimension is None:
                        self._dimension = len(vector)
                    elif len(vector) != self._dimension:
                        logger.warning(
                            "Skipping chunk %s: %d dimensions, expected %d",
                            fragment.fragment_id,
                            len(vector),
                            self._dimension,
                        )
                        continue
                    self._chunks.append(
                        Chunk(
                            chunk_id=fragment.fragment_id,
                            source=fragment.source,
                            text=fragment.text,
                            embedding=tuple(vector),
                        )
                    )
            logger.info("Similarity index built with %d chunks", len(self._chunks))
        finally:
            self._ready = True

    def _load_documents(self) -> list[ParsedDocument]:
        if self._document_loader is None:
            return []
        try:
            return self._document_loader()
        except (OSError, ValueError) as exc:
            logger.error("Failed to load source documents, index stays empty: %s", exc)
            return []


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between `a` and `b`; 0.0 for zero or mismatched vectors."""

    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
