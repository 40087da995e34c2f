"""
Search Backends for PedsQuery

SearchBackend is the contract the retriever depends on:
- vector_search: chunks whose similarity to a query vector exceeds a threshold
- text_search: lexical relevance-ranked search
- get_chapter_chunks / list_chapters: chapter browsing
- check_connection: reachability and corpus size

PostgresSearchBackend (pedsquery.db.search) is the production implementation.
InMemorySearchBackend serves a preloaded corpus with BM25 and numpy cosine
similarity, for offline use and tests.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from rank_bm25 import BM25Okapi

from pedsquery.models import Chunk
from pedsquery.rag.normalizer import QueryPreprocessor
from pedsquery.rag.similarity import rank_by_similarity

logger = logging.getLogger(__name__)


@dataclass
class ScoredChunk:
    """A chunk with the raw score a backend assigned to it."""

    chunk: Chunk
    score: float


@dataclass
class ConnectionStatus:
    connected: bool
    chunk_count: int = 0
    sample_chapter: str | None = None
    error: str | None = None


class SearchBackend(Protocol):
    async def vector_search(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int | None,
        chapter: str | None = None,
    ) -> list[ScoredChunk]: ...

    async def text_search(self, query: str, limit: int | None) -> list[ScoredChunk]: ...

    async def get_chapter_chunks(self, chapter: str, limit: int = 20) -> list[Chunk]: ...

    async def list_chapters(self) -> list[str]: ...

    async def check_connection(self) -> ConnectionStatus: ...


# ============================================
# InMemorySearchBackend
# ============================================


class InMemorySearchBackend:
    """SearchBackend over a list of chunks held in memory."""

    def __init__(self, chunks: Iterable[Chunk] = ()):
        self._chunks = list(chunks)
        self._preprocessor = QueryPreprocessor()
        self._index: BM25Okapi | None = None
        self._tokens: list[list[str]] = []
        self._build_index()

    def _build_index(self) -> None:
        """Build BM25 index from chunk contents."""
        if not self._chunks:
            return
        self._tokens = [self._preprocessor.tokenize(c.content) for c in self._chunks]
        self._index = BM25Okapi(self._tokens)

    def add(self, chunks: Iterable[Chunk]) -> None:
        self._chunks.extend(chunks)
        self._build_index()

    async def vector_search(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int | None,
        chapter: str | None = None,
    ) -> list[ScoredChunk]:
        candidates = [
            (chunk, chunk.embedding)
            for chunk in self._chunks
            if chapter is None or chunk.chapter_title == chapter
        ]
        results = [
            ScoredChunk(chunk=chunk, score=similarity)
            for chunk, similarity in rank_by_similarity(query_embedding, candidates)
            if similarity > threshold
        ]
        return results if limit is None else results[:limit]

    async def text_search(self, query: str, limit: int | None) -> list[ScoredChunk]:
        if self._index is None:
            return []
        query_tokens = self._preprocessor.tokenize(query)
        if not query_tokens:
            return []

        scores = self._index.get_scores(query_tokens)
        max_score = max(scores) if max(scores) > 0 else 1.0
        wanted = set(query_tokens)

        # BM25 IDF is zero or negative on one- and two-chunk corpora, so any
        # chunk sharing a query term is a hit and term coverage is blended in
        results = []
        for chunk, score, tokens in zip(self._chunks, scores, self._tokens, strict=True):
            coverage = len(wanted.intersection(tokens)) / len(wanted)
            if coverage == 0:
                continue
            bm25 = max(float(score), 0.0) / max_score
            results.append(ScoredChunk(chunk=chunk, score=(bm25 + coverage) / 2))
        results.sort(key=lambda r: r.score, reverse=True)
        return results if limit is None else results[:limit]

    async def get_chapter_chunks(self, chapter: str, limit: int = 20) -> list[Chunk]:
        matching = [c for c in self._chunks if c.chapter_title == chapter]
        matching.sort(key=lambda c: c.chunk_index if c.chunk_index is not None else 0)
        return matching[:limit]

    async def list_chapters(self) -> list[str]:
        return sorted({c.chapter_title for c in self._chunks if c.chapter_title})

    async def check_connection(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=True,
            chunk_count=len(self._chunks),
            sample_chapter=self._chunks[0].chapter_title if self._chunks else None,
        )
