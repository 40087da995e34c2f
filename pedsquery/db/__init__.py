"""
PedsQuery Database Module

Database components:
- PostgreSQL with pgvector integration
- SQLAlchemy models
- Search backend and chat store
"""

from pedsquery.db.models import Base, ChatMessage, ChatSession, TextbookChunk
from pedsquery.db.postgres import (
    close_db,
    get_engine,
    get_session_maker,
)

__all__ = [
    "Base",
    "TextbookChunk",
    "ChatSession",
    "ChatMessage",
    "get_engine",
    "get_session_maker",
    "close_db",
]
