"""
Retrieval for PedsQuery

Wraps a SearchBackend with the ranking policy used to answer questions:
- Vector retrieval over the full corpus or a single chapter
- Hybrid retrieval: 0.7 * cosine similarity + 0.3 * lexical rank, keyed on
  the vector result set
- Lexical text search, used when vector retrieval finds nothing

Every result is a RetrievalResult with non-increasing scores and 1-based ranks.
"""

import asyncio
import logging

from pedsquery.models import Chunk, RetrievalResult, RetrievedChunk
from pedsquery.rag.search_backend import ConnectionStatus, SearchBackend

logger = logging.getLogger(__name__)

# ============================================
# Hybrid weighting
# ============================================

VECTOR_WEIGHT = 0.7
TEXT_WEIGHT = 0.3

DEFAULT_TEXT_SEARCH_LIMIT = 3


def blend_scores(similarity: float, text_rank: float | None) -> float:
    """Combine vector and lexical scores; a missing lexical rank counts as 0."""
    return VECTOR_WEIGHT * similarity + TEXT_WEIGHT * (text_rank or 0.0)


class Retriever:
    """Ranks textbook chunks for a query using a SearchBackend."""

    def __init__(self, backend: SearchBackend):
        self.backend = backend

    async def check_connection(self) -> ConnectionStatus:
        return await self.backend.check_connection()

    async def retrieve(
        self,
        query_embedding: list[float],
        threshold: float,
        max_count: int,
        chapter_filter: str | None = None,
    ) -> RetrievalResult:
        """Chunks with similarity strictly above threshold, best first.

        With chapter_filter set, only chunks whose chapter title equals it
        are considered.
        """
        hits = await self.backend.vector_search(
            query_embedding, threshold, max_count, chapter=chapter_filter
        )
        # Backends may round at the boundary; the threshold is exclusive
        scored = [(h.chunk, h.score) for h in hits if h.score > threshold]
        result = RetrievalResult.from_scored(scored, source="vector", limit=max_count)
        for item in result:
            item.similarity = item.score
        logger.debug(
            "Vector retrieval: %d chunks (threshold=%.2f, chapter=%s)",
            len(result),
            threshold,
            chapter_filter,
        )
        return result

    async def hybrid_retrieve(
        self,
        query_text: str,
        query_embedding: list[float],
        threshold: float,
        max_count: int,
    ) -> RetrievalResult:
        """Blend vector and lexical scores over the vector candidate set.

        Both searches run concurrently and uncapped so that ranking happens
        on the blended score. Chunks found only lexically are dropped.
        """
        vector_hits, text_hits = await asyncio.gather(
            self.backend.vector_search(query_embedding, threshold, None),
            self.backend.text_search(query_text, None),
        )

        text_ranks: dict[str, float] = {h.chunk.id: h.score for h in text_hits}

        items = []
        for hit in vector_hits:
            if hit.score <= threshold:
                continue
            text_rank = text_ranks.get(hit.chunk.id)
            items.append(
                RetrievedChunk(
                    chunk=hit.chunk,
                    score=blend_scores(hit.score, text_rank),
                    rank=0,
                    source="hybrid",
                    similarity=hit.score,
                    text_rank=text_rank,
                )
            )

        items.sort(key=lambda item: item.score, reverse=True)
        items = items[:max_count]
        for rank, item in enumerate(items, 1):
            item.rank = rank

        logger.debug(
            "Hybrid retrieval: %d vector, %d lexical, %d kept",
            len(vector_hits),
            len(text_hits),
            len(items),
        )
        return RetrievalResult(items=items)

    async def text_search(
        self, query: str, limit: int = DEFAULT_TEXT_SEARCH_LIMIT
    ) -> RetrievalResult:
        """Lexical relevance-ranked search."""
        hits = await self.backend.text_search(query, limit)
        result = RetrievalResult.from_scored(
            [(h.chunk, h.score) for h in hits], source="text", limit=limit
        )
        for item in result:
            item.text_rank = item.score
        return result

    async def chapter_chunks(self, chapter: str, limit: int = 20) -> list[Chunk]:
        """Chunks of one chapter in reading order."""
        return await self.backend.get_chapter_chunks(chapter, limit)

    async def list_chapters(self) -> list[str]:
        return await self.backend.list_chapters()
