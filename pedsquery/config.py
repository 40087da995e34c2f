"""
Pipeline Configuration for PedsQuery

RAGConfig is an immutable value passed to every pipeline call. Defaults come
from default_config(); per-call overrides are merged with merge_config(),
which re-validates the result.
"""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

SearchMode = Literal["vector", "hybrid"]


class RAGConfig(BaseModel):
    """Retrieval and generation settings for a single question."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_documents: int = 5
    similarity_threshold: float = 0.7
    temperature: float = 0.1
    max_response_tokens: int = 2048
    search_mode: SearchMode = "vector"
    chapter_filter: str | None = None
    adaptive_retrieval: bool = False
    history_window: int = 6
    max_context_chars: int = 12000
    text_fallback_limit: int = 3

    @field_validator("max_documents")
    @classmethod
    def validate_max_documents(cls, v: int) -> int:
        if v < 1 or v > 20:
            raise ValueError("max_documents must be between 1 and 20")
        return v

    @field_validator("similarity_threshold")
    @classmethod
    def validate_similarity_threshold(cls, v: float) -> float:
        if v < 0.0 or v > 1.0:
            raise ValueError("similarity_threshold must be between 0.0 and 1.0")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if v < 0.0 or v > 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_response_tokens", "max_context_chars", "text_fallback_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    @field_validator("history_window")
    @classmethod
    def validate_history_window(cls, v: int) -> int:
        if v < 0:
            raise ValueError("history_window must not be negative")
        return v


def default_config() -> RAGConfig:
    """Return the default pipeline configuration."""
    return RAGConfig()


def merge_config(
    overrides: RAGConfig | Mapping[str, Any] | None = None,
    base: RAGConfig | None = None,
) -> RAGConfig:
    """Merge per-call overrides onto a base configuration.

    Mapping overrides only replace the keys they name; a full RAGConfig
    replaces the base outright. The merged value is validated again.
    """
    base = base or default_config()
    if overrides is None:
        return base
    if isinstance(overrides, RAGConfig):
        return overrides
    return RAGConfig.model_validate({**base.model_dump(), **dict(overrides)})
