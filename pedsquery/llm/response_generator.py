"""
Response Generation for PedsQuery

Drives the chat model with retrieved textbook context:
- generate(): one blocking completion
- generate_stream(): increment events as text arrives, then one final event

Both paths derive citations (one per context chunk, in rank order) and a
heuristic confidence label from the same inputs, so a streamed answer and a
blocking answer for the same completion are identical.
"""

import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing

from pedsquery.config import RAGConfig, default_config
from pedsquery.errors import GenerationError
from pedsquery.llm.mistral_client import MistralClient
from pedsquery.llm.prompt_templates import build_messages
from pedsquery.models import (
    CORPUS_NAME,
    ChatTurn,
    Citation,
    Confidence,
    GeneratedAnswer,
    RetrievedChunk,
    StreamEvent,
)
from pedsquery.rag.context import assemble_context, fit_to_budget

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_MIN_DOCUMENTS = 3
MEDIUM_CONFIDENCE_MIN_CHARS = 200


def determine_confidence(document_count: int, content: str) -> Confidence:
    """Label an answer from how many chunks backed it and what it says.

    Not calibrated: high needs at least three chunks and an explicit
    mention of the textbook, medium needs one chunk and a substantive
    answer, everything else is low.
    """
    if document_count >= HIGH_CONFIDENCE_MIN_DOCUMENTS and CORPUS_NAME in content:
        return "high"
    if document_count >= 1 and len(content) > MEDIUM_CONFIDENCE_MIN_CHARS:
        return "medium"
    return "low"


def build_citations(retrieved: Sequence[RetrievedChunk]) -> list[Citation]:
    """One citation per retrieved chunk, in rank order.

    Citations mirror the context, not the generated text: a chunk is cited
    whether or not the answer actually drew on it.
    """
    return [Citation.from_chunk(item.chunk, item.score) for item in retrieved]


class ResponseGenerator:
    """Grounded answer generation over a MistralClient."""

    def __init__(self, client: MistralClient | None = None):
        self.client = client or MistralClient()

    @property
    def model_name(self) -> str:
        return self.client.model

    def _prepare(
        self,
        query: str,
        retrieved: Sequence[RetrievedChunk],
        history: Sequence[ChatTurn] | None,
        config: RAGConfig,
    ) -> tuple[list[RetrievedChunk], list[dict[str, str]]]:
        chunks = fit_to_budget([item.chunk for item in retrieved], config.max_context_chars)
        if len(chunks) < len(retrieved):
            logger.info(
                "Context budget of %d chars kept %d of %d chunks",
                config.max_context_chars,
                len(chunks),
                len(retrieved),
            )
        # fit_to_budget may shorten the first chunk; keep that version
        used = [
            RetrievedChunk(
                chunk=chunk,
                score=item.score,
                rank=item.rank,
                source=item.source,
                similarity=item.similarity,
                text_rank=item.text_rank,
            )
            for chunk, item in zip(chunks, retrieved)
        ]
        messages = build_messages(
            query, assemble_context(chunks), history, config.history_window
        )
        return used, messages

    def _answer(
        self, content: str, used: list[RetrievedChunk], start: float
    ) -> GeneratedAnswer:
        return GeneratedAnswer(
            content=content,
            confidence=determine_confidence(len(used), content),
            citations=build_citations(used),
            retrieved_documents=[item.chunk for item in used],
            processing_time_ms=round((time.time() - start) * 1000, 2),
        )

    async def generate(
        self,
        query: str,
        retrieved: Sequence[RetrievedChunk],
        history: Sequence[ChatTurn] | None = None,
        config: RAGConfig | None = None,
    ) -> GeneratedAnswer:
        """Blocking generation.

        Raises:
            GenerationError: If the chat backend fails.
        """
        config = config or default_config()
        start = time.time()
        used, messages = self._prepare(query, retrieved, history, config)
        content = await self.client.chat(
            messages,
            temperature=config.temperature,
            max_tokens=config.max_response_tokens,
        )
        return self._answer(content, used, start)

    async def generate_stream(
        self,
        query: str,
        retrieved: Sequence[RetrievedChunk],
        history: Sequence[ChatTurn] | None = None,
        config: RAGConfig | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming generation: increment events, then exactly one final event.

        Raises:
            GenerationError: If the chat backend fails or yields no text.
        """
        config = config or default_config()
        start = time.time()
        used, messages = self._prepare(query, retrieved, history, config)

        parts: list[str] = []
        stream = self.client.chat_stream(
            messages,
            temperature=config.temperature,
            max_tokens=config.max_response_tokens,
        )
        async with aclosing(stream):
            async for fragment in stream:
                parts.append(fragment)
                yield StreamEvent.increment(fragment)

        content = "".join(parts)
        if not content:
            raise GenerationError("No response content from Mistral stream")
        yield StreamEvent.final(self._answer(content, used, start))
