"""
Context Assembly for PedsQuery

Formats retrieved chunks into the grounding block sent to the generator.
Each chunk gets a provenance header (chapter, section, optional subsection,
edition, optional page), its content, and a separator. Rank order is kept.
"""

import re
from dataclasses import replace

from pedsquery.models import Chunk

SEPARATOR = "\n\n---\n"
ELLIPSIS = "..."


def format_chunk(chunk: Chunk) -> str:
    header = f"**Chapter {chunk.chapter_title} - {chunk.section}**"
    if chunk.subsection:
        header += f" - {chunk.subsection}"
    provenance = f"(Edition: {chunk.edition}"
    if chunk.page_number:
        provenance += f", Page: {chunk.page_number}"
    provenance += ")"
    return f"{header}\n{provenance}\n\n{chunk.content}{SEPARATOR}"


def assemble_context(chunks: list[Chunk]) -> str:
    """Concatenate formatted chunks in the order given."""
    return "\n".join(format_chunk(chunk) for chunk in chunks)


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Truncate text at a sentence boundary, falling back to hard cut.

    Finds the last sentence-ending punctuation (. ? !) followed by a space
    or newline before the limit, but only if it's past the halfway point.
    The result never exceeds max_chars, ellipsis included.
    """
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    match = None
    for m in re.finditer(r"[.!?](?:\s|\n)", text[half:max_chars]):
        match = m
    if match:
        return text[: half + match.end()].rstrip()
    if max_chars <= len(ELLIPSIS):
        return text[:max_chars]
    return text[: max_chars - len(ELLIPSIS)] + ELLIPSIS


def fit_to_budget(chunks: list[Chunk], max_chars: int) -> list[Chunk]:
    """Keep leading chunks whose formatted size fits within max_chars.

    The first chunk is always kept; if it alone exceeds the budget its
    content is cut at a sentence boundary. Later chunks that would overflow
    are dropped along with everything after them.
    """
    if not chunks:
        return []

    first = chunks[0]
    overhead = len(format_chunk(first)) - len(first.content)
    if len(format_chunk(first)) > max_chars:
        room = max(max_chars - overhead, 1)
        first = replace(first, content=truncate_at_sentence(first.content, room))

    kept = [first]
    used = len(format_chunk(first))
    for chunk in chunks[1:]:
        # +1 for the newline joining entries
        size = len(format_chunk(chunk)) + 1
        if used + size > max_chars:
            break
        kept.append(chunk)
        used += size
    return kept
