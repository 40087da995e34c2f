"""
Core Data Types for PedsQuery

Plain dataclasses shared by every layer of the pipeline:
- Chunk: a retrievable textbook passage with provenance
- RetrievalResult: ranked chunks with similarity scores
- Citation / GeneratedAnswer: what callers receive
- StreamEvent: tagged items of a streamed answer
"""

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pedsquery.errors import DimensionMismatchError

# Dimension of all-MiniLM-L6-v2 vectors stored in the corpus index
EMBEDDING_DIMENSION = int(os.environ.get("EMBEDDING_DIMENSION", "384"))

CORPUS_NAME = "Nelson Textbook"
DEFAULT_EDITION = os.environ.get("CORPUS_EDITION", "22nd Edition")
DEFAULT_SECTION = "General"

Confidence = Literal["high", "medium", "low"]
Role = Literal["user", "assistant"]


# ============================================
# Chunk
# ============================================


@dataclass
class Chunk:
    """A passage of the textbook with provenance and an optional embedding."""

    id: str
    content: str
    chapter_title: str
    section_title: str | None = None
    page_number: int | None = None
    chunk_index: int | None = None
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.content or not self.content.strip():
            raise ValueError(f"Chunk {self.id!r} has empty content")
        if self.embedding is not None and len(self.embedding) != EMBEDDING_DIMENSION:
            raise DimensionMismatchError(EMBEDDING_DIMENSION, len(self.embedding))

    @property
    def section(self) -> str:
        return self.section_title or DEFAULT_SECTION

    @property
    def subsection(self) -> str | None:
        return self.metadata.get("subsection")

    @property
    def edition(self) -> str:
        return self.metadata.get("edition") or DEFAULT_EDITION


def chunk_from_record(record: Mapping[str, Any]) -> Chunk:
    """Build a Chunk from a backend row or a legacy document dict.

    Field contract (first key present wins):
        id            <- "id" (stringified, UUIDs included)
        content       <- "content"
        chapter_title <- "chapter_title", "chapter"
        section_title <- "section_title", "section"; "General" is kept as-is
        page_number   <- "page_number" (int, or None)
        chunk_index   <- "chunk_index" (int, or None)
        embedding     <- "embedding"; empty sequences become None
        metadata      <- "metadata" (None becomes {}); a legacy "edition" or
                         "subsection" key is folded into metadata

    Scores ("similarity", "text_rank") are not part of a Chunk and are read
    separately by the search backend.
    """
    metadata = dict(record.get("metadata") or {})
    for key in ("edition", "subsection"):
        if record.get(key) and key not in metadata:
            metadata[key] = record[key]

    embedding = record.get("embedding")
    if embedding is not None:
        embedding = [float(v) for v in embedding]
        if not embedding:
            embedding = None

    page_number = record.get("page_number")
    chunk_index = record.get("chunk_index")

    return Chunk(
        id=str(record["id"]),
        content=record["content"],
        chapter_title=record.get("chapter_title") or record.get("chapter") or "",
        section_title=record.get("section_title") or record.get("section"),
        page_number=int(page_number) if page_number is not None else None,
        chunk_index=int(chunk_index) if chunk_index is not None else None,
        embedding=embedding,
        metadata=metadata,
    )


# ============================================
# Retrieval
# ============================================


@dataclass
class RetrievedChunk:
    """A chunk with its relevance score and 1-based rank."""

    chunk: Chunk
    score: float
    rank: int
    source: str  # "vector", "text", or "hybrid"
    similarity: float | None = None
    text_rank: float | None = None


@dataclass
class RetrievalResult:
    """Ranked retrieval output; scores never increase with rank."""

    items: list[RetrievedChunk] = field(default_factory=list)

    @classmethod
    def from_scored(
        cls,
        scored: list[tuple[Chunk, float]],
        source: str,
        limit: int | None = None,
    ) -> "RetrievalResult":
        """Sort (chunk, score) pairs by descending score and assign ranks."""
        ordered = sorted(scored, key=lambda pair: pair[1], reverse=True)
        if limit is not None:
            ordered = ordered[:limit]
        return cls(
            items=[
                RetrievedChunk(chunk=chunk, score=score, rank=i, source=source)
                for i, (chunk, score) in enumerate(ordered, 1)
            ]
        )

    @property
    def chunks(self) -> list[Chunk]:
        return [item.chunk for item in self.items]

    @property
    def scores(self) -> list[float]:
        return [item.score for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[RetrievedChunk]:
        return iter(self.items)


# ============================================
# Answers
# ============================================


@dataclass
class Citation:
    """Provenance for one chunk that was placed in the answer context."""

    chapter: str
    section: str
    edition: str
    page: int | None = None
    relevance_score: float | None = None
    chunk_id: str | None = None

    @classmethod
    def from_chunk(cls, chunk: Chunk, relevance_score: float | None = None) -> "Citation":
        return cls(
            chapter=chunk.chapter_title,
            section=chunk.section,
            edition=chunk.edition,
            page=chunk.page_number,
            relevance_score=relevance_score,
            chunk_id=chunk.id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.chunk_id,
            "chapter": self.chapter,
            "section": self.section,
            "page_number": self.page,
            "edition": self.edition,
            "relevance_score": self.relevance_score,
        }


@dataclass
class GeneratedAnswer:
    """Terminal value of every pipeline invocation."""

    content: str
    confidence: Confidence
    citations: list[Citation] = field(default_factory=list)
    retrieved_documents: list[Chunk] = field(default_factory=list)
    processing_time_ms: float = 0.0
    embedding_model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "confidence": self.confidence,
            "citations": [c.to_dict() for c in self.citations],
            "retrieved_documents": [
                {
                    "id": doc.id,
                    "chapter": doc.chapter_title,
                    "section": doc.section,
                    "page_number": doc.page_number,
                    "edition": doc.edition,
                    "content": doc.content,
                }
                for doc in self.retrieved_documents
            ],
            "processing_time_ms": self.processing_time_ms,
            "embedding_model": self.embedding_model,
        }


@dataclass
class ChatTurn:
    """One prior conversation turn supplied as generation history."""

    role: Role
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


# ============================================
# Streaming
# ============================================

StreamKind = Literal["progress", "increment", "final"]


@dataclass
class StreamEvent:
    """One item of a streamed answer.

    "increment" events carry answer text, "progress" events carry status
    markers that are not part of the answer, and exactly one "final" event
    closes the stream with the GeneratedAnswer.
    """

    kind: StreamKind
    text: str = ""
    answer: GeneratedAnswer | None = None

    @classmethod
    def progress(cls, text: str) -> "StreamEvent":
        return cls(kind="progress", text=text)

    @classmethod
    def increment(cls, text: str) -> "StreamEvent":
        return cls(kind="increment", text=text)

    @classmethod
    def final(cls, answer: GeneratedAnswer) -> "StreamEvent":
        return cls(kind="final", answer=answer)
