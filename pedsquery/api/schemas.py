"""
Request Models for the PedsQuery API
"""

from typing import Any, Literal

from pydantic import BaseModel, field_validator

from pedsquery.models import ChatTurn

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 1000


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    def to_turn(self) -> ChatTurn:
        return ChatTurn(role=self.role, content=self.content)


class QueryRequest(BaseModel):
    """Validated query request model.

    Unset tuning fields fall back to the pipeline defaults.
    """

    question: str
    session_id: str | None = None
    history: list[HistoryTurn] | None = None
    max_documents: int | None = None
    similarity_threshold: float | None = None
    temperature: float | None = None
    search_mode: Literal["vector", "hybrid"] | None = None
    chapter_filter: str | None = None
    adaptive_retrieval: bool | None = None

    @field_validator("question")
    @classmethod
    def validate_question(cls, v: str) -> str:
        v = v.strip()
        if len(v) < MIN_QUERY_LENGTH:
            raise ValueError(f"Query must be at least {MIN_QUERY_LENGTH} characters")
        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f"Query must be at most {MAX_QUERY_LENGTH} characters")
        return v

    def config_overrides(self) -> dict[str, Any]:
        fields = (
            "max_documents",
            "similarity_threshold",
            "temperature",
            "search_mode",
            "chapter_filter",
            "adaptive_retrieval",
        )
        return {
            name: getattr(self, name) for name in fields if getattr(self, name) is not None
        }

    def history_turns(self) -> list[ChatTurn] | None:
        if self.history is None:
            return None
        return [turn.to_turn() for turn in self.history]


class SessionCreateRequest(BaseModel):
    title: str = "New conversation"
    user_id: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v[:255]
