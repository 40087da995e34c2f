"""
Textbook Chunker for PedsQuery

Splits chapter text into overlapping, size-bounded chunks for indexing.
Splitting prefers paragraph, then line, then sentence boundaries; each
chunk is normalized and tagged with the nearest section heading.
"""

import hashlib
import re
from typing import Any

from langchain_text_splitters import RecursiveCharacterTextSplitter

from pedsquery.models import Chunk
from pedsquery.rag.normalizer import normalize

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50


def _chunk_id(chapter_title: str, chunk_index: int, content: str) -> str:
    key = f"{chapter_title}\x00{chunk_index}\x00{content}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


# ============================================
# Section Titles
# ============================================


class SectionTitleExtractor:
    """Finds a section heading inside a chunk of textbook text."""

    MARKDOWN_HEADER_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)
    NUMBERED_SECTION_PATTERN = re.compile(r"^(\d+(?:\.\d+)+)\s+(.+)$", re.MULTILINE)

    def extract(self, text: str) -> str | None:
        """Return the first markdown or numbered heading, or None."""
        match = self.MARKDOWN_HEADER_PATTERN.search(text)
        if match:
            return match.group(2).strip()

        match = self.NUMBERED_SECTION_PATTERN.search(text)
        if match:
            return match.group(2).strip()

        return None


# ============================================
# TextbookChunker
# ============================================


class TextbookChunker:
    """Overlapping character-bounded splitter for textbook chapters.

    Attributes:
        chunk_size: Maximum characters per chunk (default: 500).
        chunk_overlap: Characters shared by consecutive chunks (default: 50).
    """

    SEPARATORS = ["\n\n", "\n", ". ", " ", ""]

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=self.SEPARATORS,
            length_function=len,
        )
        self._titles = SectionTitleExtractor()

    def split(self, text: str) -> list[str]:
        """Split raw text into normalized, non-empty segments."""
        if not text or not text.strip():
            return []
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        # Normalize per segment; normalizing first would erase paragraph breaks
        segments = [normalize(s) for s in self._splitter.split_text(text)]
        return [s for s in segments if s]

    def chunk(
        self,
        text: str,
        chapter_title: str,
        page_number: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[Chunk]:
        """Chunk a chapter into Chunk records with sequential indices.

        Chunk ids are the SHA256 of chapter title, chunk index and text, so
        re-chunking the same chapter yields the same ids and repeated
        passages still get distinct ones. The section heading seen most recently
        is carried forward onto chunks that have none of their own.
        """
        if not text or not text.strip():
            return []
        text = text.replace("\r\n", "\n").replace("\r", "\n")

        chunks: list[Chunk] = []
        current_section: str | None = None
        for raw in self._splitter.split_text(text):
            current_section = self._titles.extract(raw) or current_section
            content = normalize(raw)
            if not content:
                continue
            chunk_index = len(chunks)
            chunks.append(
                Chunk(
                    id=_chunk_id(chapter_title, chunk_index, content),
                    content=content,
                    chapter_title=chapter_title,
                    section_title=current_section,
                    page_number=page_number,
                    chunk_index=chunk_index,
                    metadata=dict(metadata or {}),
                )
            )
        return chunks
