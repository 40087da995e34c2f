"""
PostgreSQL Search Backend for PedsQuery

SearchBackend over the nelson_textbook_chunks table:
- Vector search with pgvector cosine distance (similarity = 1 - distance)
- Lexical search ranked with ts_rank_cd, normalized into [0, 1)
- Chapter browsing and connection checks

Each call opens its own session. Database errors surface as ConnectivityError.
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pedsquery.errors import ConnectivityError
from pedsquery.models import Chunk, chunk_from_record
from pedsquery.rag.search_backend import ConnectionStatus, ScoredChunk

logger = logging.getLogger(__name__)

CHUNK_COLUMNS = (
    "id, content, chapter_title, section_title, page_number, chunk_index, metadata"
)

VECTOR_SEARCH_SQL = (
    f"SELECT {CHUNK_COLUMNS}, "
    "1 - (embedding <=> CAST(:query_vector AS vector)) AS similarity "
    "FROM nelson_textbook_chunks "
    "WHERE embedding IS NOT NULL "
    "AND (CAST(:chapter AS text) IS NULL OR chapter_title = :chapter) "
    "AND 1 - (embedding <=> CAST(:query_vector AS vector)) > :threshold "
    "ORDER BY embedding <=> CAST(:query_vector AS vector) "
    "LIMIT :limit"
)

# Normalization flag 32 maps rank to rank / (rank + 1)
TEXT_SEARCH_SQL = (
    f"SELECT {CHUNK_COLUMNS}, "
    "ts_rank_cd(to_tsvector('english', content), "
    "plainto_tsquery('english', :query), 32) AS text_rank "
    "FROM nelson_textbook_chunks "
    "WHERE to_tsvector('english', content) @@ plainto_tsquery('english', :query) "
    "ORDER BY text_rank DESC "
    "LIMIT :limit"
)

CHAPTER_CHUNKS_SQL = (
    f"SELECT {CHUNK_COLUMNS} FROM nelson_textbook_chunks "
    "WHERE chapter_title = :chapter "
    "ORDER BY chunk_index ASC NULLS LAST "
    "LIMIT :limit"
)

LIST_CHAPTERS_SQL = (
    "SELECT DISTINCT chapter_title FROM nelson_textbook_chunks "
    "WHERE chapter_title IS NOT NULL ORDER BY chapter_title"
)


def format_vector(values: list[float]) -> str:
    """pgvector literal: '[1.0,2.0,3.0]'."""
    return "[" + ",".join(str(v) for v in values) + "]"


class PostgresSearchBackend:
    """SearchBackend backed by PostgreSQL with pgvector."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _fetch(self, sql: str, params: dict) -> list:
        try:
            async with self._session_maker() as session:
                result = await session.execute(text(sql), params)
                return list(result.mappings().all())
        except SQLAlchemyError as e:
            logger.error("Search query failed: %s", e, exc_info=True)
            raise ConnectivityError(f"Database query failed: {e}") from e

    async def vector_search(
        self,
        query_embedding: list[float],
        threshold: float,
        limit: int | None,
        chapter: str | None = None,
    ) -> list[ScoredChunk]:
        rows = await self._fetch(
            VECTOR_SEARCH_SQL,
            {
                "query_vector": format_vector(query_embedding),
                "threshold": threshold,
                "chapter": chapter,
                "limit": limit,
            },
        )
        return [
            ScoredChunk(chunk=chunk_from_record(row), score=float(row["similarity"]))
            for row in rows
        ]

    async def text_search(self, query: str, limit: int | None) -> list[ScoredChunk]:
        rows = await self._fetch(TEXT_SEARCH_SQL, {"query": query, "limit": limit})
        return [
            ScoredChunk(chunk=chunk_from_record(row), score=float(row["text_rank"]))
            for row in rows
        ]

    async def get_chapter_chunks(self, chapter: str, limit: int = 20) -> list[Chunk]:
        rows = await self._fetch(CHAPTER_CHUNKS_SQL, {"chapter": chapter, "limit": limit})
        return [chunk_from_record(row) for row in rows]

    async def list_chapters(self) -> list[str]:
        rows = await self._fetch(LIST_CHAPTERS_SQL, {})
        return [row["chapter_title"] for row in rows]

    async def check_connection(self) -> ConnectionStatus:
        """Count chunks and sample one chapter; never raises."""
        try:
            async with self._session_maker() as session:
                count = await session.execute(
                    text("SELECT COUNT(*) FROM nelson_textbook_chunks")
                )
                chunk_count = int(count.scalar() or 0)
                sample = await session.execute(
                    text("SELECT chapter_title FROM nelson_textbook_chunks LIMIT 1")
                )
                sample_chapter = sample.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database connection check failed: %s", e)
            return ConnectionStatus(connected=False, error=str(e))

        return ConnectionStatus(
            connected=True,
            chunk_count=chunk_count,
            sample_chapter=sample_chapter,
        )
