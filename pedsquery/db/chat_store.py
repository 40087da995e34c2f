"""
Chat Persistence for PedsQuery

ChatStore is the contract the pipeline uses to record conversations.
PostgresChatStore implements it with the chat_sessions and chat_messages
tables. Saving a message also bumps the session's message_count and
last_message_at.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pedsquery.db.models import ChatMessage, ChatSession
from pedsquery.errors import PersistenceError
from pedsquery.models import ChatTurn, Citation, Confidence, Role

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIMIT = 10


class ChatStore(Protocol):
    async def create_session(self, title: str, user_id: str | None = None) -> str: ...

    async def save_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        citations: list[Citation] | None = None,
        confidence: Confidence | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str: ...

    async def get_sessions(self, limit: int = DEFAULT_SESSION_LIMIT) -> list[dict[str, Any]]: ...

    async def get_messages(self, session_id: str) -> list[dict[str, Any]]: ...

    async def get_recent_messages(self, session_id: str, limit: int) -> list[ChatTurn]: ...


def _as_uuid(session_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(session_id))
    except ValueError as e:
        raise PersistenceError(f"Invalid session id: {session_id!r}") from e


def _session_to_dict(row: ChatSession) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "user_id": row.user_id,
        "title": row.title,
        "message_count": row.message_count,
        "last_message_at": row.last_message_at.isoformat(),
        "created_at": row.created_at.isoformat(),
    }


def _message_to_dict(row: ChatMessage) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "session_id": str(row.session_id),
        "role": row.role,
        "content": row.content,
        "citations": row.citations or [],
        "confidence": row.confidence,
        "metadata": row.extra_metadata or {},
        "created_at": row.created_at.isoformat(),
    }


class PostgresChatStore:
    """ChatStore over PostgreSQL; every failure raises PersistenceError."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def create_session(self, title: str, user_id: str | None = None) -> str:
        try:
            async with self._session_maker() as session:
                row_id = uuid.uuid4()
                row = ChatSession(id=row_id, title=title, user_id=user_id, message_count=0)
                session.add(row)
                await session.commit()
                return str(row_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create chat session: {e}") from e

    async def save_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        citations: list[Citation] | None = None,
        confidence: Confidence | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        sid = _as_uuid(session_id)
        now = datetime.now(timezone.utc)
        try:
            async with self._session_maker() as session:
                message_id = uuid.uuid4()
                message = ChatMessage(
                    id=message_id,
                    session_id=sid,
                    role=role,
                    content=content,
                    citations=[c.to_dict() for c in citations] if citations else None,
                    confidence=confidence,
                    extra_metadata=metadata,
                    created_at=now,
                )
                session.add(message)
                await session.execute(
                    update(ChatSession)
                    .where(ChatSession.id == sid)
                    .values(
                        message_count=ChatSession.message_count + 1,
                        last_message_at=now,
                    )
                )
                await session.commit()
                return str(message_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save chat message: {e}") from e

    async def get_sessions(self, limit: int = DEFAULT_SESSION_LIMIT) -> list[dict[str, Any]]:
        """Most recently active sessions first."""
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(ChatSession)
                    .order_by(ChatSession.last_message_at.desc())
                    .limit(limit)
                )
                return [_session_to_dict(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list chat sessions: {e}") from e

    async def get_messages(self, session_id: str) -> list[dict[str, Any]]:
        """All messages of a session, oldest first."""
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == _as_uuid(session_id))
                    .order_by(ChatMessage.created_at.asc())
                )
                return [_message_to_dict(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read chat messages: {e}") from e

    async def get_recent_messages(self, session_id: str, limit: int) -> list[ChatTurn]:
        """The last `limit` turns of a session, oldest first."""
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == _as_uuid(session_id))
                    .order_by(ChatMessage.created_at.desc())
                    .limit(limit)
                )
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read chat messages: {e}") from e
        rows.reverse()
        return [ChatTurn(role=row.role, content=row.content) for row in rows]
