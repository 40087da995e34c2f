"""
Question-Answering Pipeline for PedsQuery

The top-level "answer this question" flow:
validate -> check connectivity -> embed -> retrieve -> generate -> persist.

Every invocation ends in a GeneratedAnswer:
- Safety refusals and empty retrievals are ordinary low/medium answers
- Connectivity and generation failures become a low-confidence error answer
- Persistence failures are logged and never change the answer

ask_question() and ask_question_streaming() share one implementation, so
the streamed increments always concatenate to the blocking answer's content.
"""

import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing

from pedsquery.config import RAGConfig, merge_config
from pedsquery.db.chat_store import ChatStore
from pedsquery.errors import ConnectivityError, GenerationError
from pedsquery.llm.response_generator import ResponseGenerator, build_citations
from pedsquery.models import ChatTurn, GeneratedAnswer, RetrievalResult, StreamEvent
from pedsquery.observability.metrics import record_query
from pedsquery.rag.classifier import QueryClassifier
from pedsquery.rag.context import truncate_at_sentence
from pedsquery.rag.embedding import FALLBACK_MODEL_NAME, EmbeddingGenerator
from pedsquery.rag.retriever import Retriever

logger = logging.getLogger(__name__)

# ============================================
# Messages
# ============================================

PROGRESS_CONNECTING = "Connecting to Nelson Textbook database..."
PROGRESS_ANALYZING = "Analyzing your medical query..."
PROGRESS_SEARCHING = "Searching Nelson Textbook of Pediatrics..."
PROGRESS_GENERATING = (
    "Found {count} relevant medical references. Generating evidence-based response..."
)

CONNECTIVITY_MESSAGE = (
    "Database connection failed. Please check your database configuration."
)

NO_RESULTS_TEMPLATE = """I apologize, but I couldn't find relevant information in the Nelson Textbook of Pediatrics for your query: "{query}".

This could be because:
- The topic may not be covered in the available Nelson Textbook content
- The query might need to be rephrased using more specific medical terminology
- The similarity threshold may be too restrictive

Please try rephrasing your question with more specific pediatric medical terms, or ask about a different aspect of the topic."""

ERROR_TEMPLATE = """I encountered an error while processing your query: {error}

Please try:
- Rephrasing your question with different medical terminology
- Breaking down complex questions into simpler parts
- Checking your internet connection

If the problem persists, please contact technical support."""

TEXT_SEARCH_NOTE = (
    "*Note: This response is based on text search due to limited vector similarity.*"
)

EXCERPT_CHARS = 400


def build_extractive_answer(result: RetrievalResult) -> str:
    """Quote the lexically matched passages instead of generating an answer."""
    parts = []
    for item in result:
        chunk = item.chunk
        excerpt = truncate_at_sentence(chunk.content, EXCERPT_CHARS)
        parts.append(
            f"{item.rank}. {excerpt} [Chapter {chunk.chapter_title} - {chunk.section}]"
        )
    return (
        "Based on the most relevant passages from the Nelson Textbook of Pediatrics:\n\n"
        + "\n\n".join(parts)
        + "\n\n"
        + TEXT_SEARCH_NOTE
    )


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


class QAPipeline:
    """Retrieval-augmented answering over the Nelson Textbook."""

    def __init__(
        self,
        retriever: Retriever,
        embedder: EmbeddingGenerator,
        generator: ResponseGenerator,
        classifier: QueryClassifier | None = None,
        chat_store: ChatStore | None = None,
        config: RAGConfig | None = None,
    ):
        self.retriever = retriever
        self.embedder = embedder
        self.generator = generator
        self.classifier = classifier or QueryClassifier()
        self.chat_store = chat_store
        self.config = merge_config(config)

    async def ask_question(
        self,
        query: str,
        session_id: str | None = None,
        history: Sequence[ChatTurn] | None = None,
        config: RAGConfig | dict | None = None,
    ) -> GeneratedAnswer:
        """Answer a question with a single blocking generation call."""
        answer = None
        async for event in self._run(query, session_id, history, config, stream=False):
            if event.kind == "final":
                answer = event.answer
        return answer

    async def ask_question_streaming(
        self,
        query: str,
        session_id: str | None = None,
        history: Sequence[ChatTurn] | None = None,
        config: RAGConfig | dict | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Answer a question as a stream of events.

        Yields progress markers, answer increments, and exactly one final
        event carrying the GeneratedAnswer.
        """
        async with aclosing(
            self._run(query, session_id, history, config, stream=True)
        ) as events:
            async for event in events:
                yield event

    # ============================================
    # State machine
    # ============================================

    async def _run(
        self,
        query: str,
        session_id: str | None,
        history: Sequence[ChatTurn] | None,
        overrides: RAGConfig | dict | None,
        stream: bool,
    ) -> AsyncIterator[StreamEvent]:
        start = time.time()
        config = merge_config(overrides, self.config)

        verdict = self.classifier.classify(query)
        if not verdict.safe:
            logger.info("Query refused by safety gate")
            answer = GeneratedAnswer(
                content=verdict.reason,
                confidence="low",
                processing_time_ms=_elapsed_ms(start),
            )
            record_query(answer.processing_time_ms, answer.confidence, outcome="rejected")
            yield StreamEvent.increment(answer.content)
            yield StreamEvent.final(answer)
            return

        embedding_model = None
        try:
            yield StreamEvent.progress(PROGRESS_CONNECTING)
            status = await self.retriever.check_connection()
            if not status.connected:
                raise ConnectivityError(CONNECTIVITY_MESSAGE)

            yield StreamEvent.progress(PROGRESS_ANALYZING)
            embedding = await self.embedder.embed(query)
            embedding_model = embedding.model

            yield StreamEvent.progress(PROGRESS_SEARCHING)
            retrieved = await self._retrieve(query, embedding.vector, config)

            if not retrieved:
                answer = await self._text_fallback(query, config)
                answer.processing_time_ms = _elapsed_ms(start)
                answer.embedding_model = embedding_model
                record_query(
                    answer.processing_time_ms,
                    answer.confidence,
                    outcome="no_evidence",
                    fallback_embedding=embedding_model == FALLBACK_MODEL_NAME,
                )
                yield StreamEvent.increment(answer.content)
                yield StreamEvent.final(answer)
                return

            yield StreamEvent.progress(PROGRESS_GENERATING.format(count=len(retrieved)))
            if history is None:
                history = await self._load_history(session_id, config)

            if stream:
                answer = None
                events = self.generator.generate_stream(
                    query, retrieved.items, history, config
                )
                async with aclosing(events):
                    async for event in events:
                        if event.kind == "final":
                            answer = event.answer
                        else:
                            yield event
            else:
                answer = await self.generator.generate(
                    query, retrieved.items, history, config
                )
                yield StreamEvent.increment(answer.content)

        except (ConnectivityError, GenerationError) as e:
            logger.error("QA pipeline error: %s", e, exc_info=True)
            answer = GeneratedAnswer(
                content=ERROR_TEMPLATE.format(error=e),
                confidence="low",
                processing_time_ms=_elapsed_ms(start),
                embedding_model=embedding_model,
            )
            record_query(answer.processing_time_ms, answer.confidence, outcome="error")
            yield StreamEvent.increment(answer.content)
            yield StreamEvent.final(answer)
            return

        answer.processing_time_ms = _elapsed_ms(start)
        answer.embedding_model = embedding_model
        await self._persist(session_id, query, answer)
        record_query(
            answer.processing_time_ms,
            answer.confidence,
            fallback_embedding=embedding_model == FALLBACK_MODEL_NAME,
        )
        logger.info(
            "Answered query in %.0fms (%d documents, confidence=%s)",
            answer.processing_time_ms,
            len(answer.retrieved_documents),
            answer.confidence,
        )
        yield StreamEvent.final(answer)

    async def _retrieve(
        self, query: str, vector: list[float], config: RAGConfig
    ) -> RetrievalResult:
        max_documents = config.max_documents
        threshold = config.similarity_threshold
        if config.adaptive_retrieval:
            complexity = self.classifier.complexity(query)
            max_documents = complexity.suggested_doc_count
            threshold = complexity.suggested_threshold
            logger.debug(
                "Adaptive retrieval: %s query, %d documents above %.2f",
                complexity.level,
                max_documents,
                threshold,
            )

        # A chapter filter scopes the search; hybrid ranking is corpus-wide
        if config.chapter_filter:
            return await self.retriever.retrieve(
                vector, threshold, max_documents, chapter_filter=config.chapter_filter
            )
        if config.search_mode == "hybrid":
            return await self.retriever.hybrid_retrieve(
                query, vector, threshold, max_documents
            )
        return await self.retriever.retrieve(vector, threshold, max_documents)

    async def _text_fallback(self, query: str, config: RAGConfig) -> GeneratedAnswer:
        """One lexical search; quote its hits or return the no-results answer."""
        logger.warning("No chunks above threshold, attempting text search fallback")
        try:
            result = await self.retriever.text_search(query, config.text_fallback_limit)
        except ConnectivityError as e:
            logger.warning("Text search fallback failed: %s", e)
            result = RetrievalResult()

        if not result:
            return GeneratedAnswer(
                content=NO_RESULTS_TEMPLATE.format(query=query),
                confidence="low",
            )

        return GeneratedAnswer(
            content=build_extractive_answer(result),
            confidence="medium",
            citations=build_citations(result.items),
            retrieved_documents=result.chunks,
        )

    async def _load_history(
        self, session_id: str | None, config: RAGConfig
    ) -> list[ChatTurn]:
        if not session_id or self.chat_store is None or config.history_window == 0:
            return []
        try:
            return await self.chat_store.get_recent_messages(
                session_id, config.history_window
            )
        except Exception as e:
            logger.warning("Could not load history for session %s: %s", session_id, e)
            return []

    async def _persist(self, session_id: str | None, query: str, answer: GeneratedAnswer) -> None:
        """Save the exchange; failures are logged and dropped."""
        if not session_id or self.chat_store is None:
            return
        try:
            await self.chat_store.save_message(session_id, "user", query)
            await self.chat_store.save_message(
                session_id,
                "assistant",
                answer.content,
                citations=answer.citations,
                confidence=answer.confidence,
                metadata={
                    "retrieved_documents_count": len(answer.retrieved_documents),
                    "processing_time_ms": answer.processing_time_ms,
                    "model": self.generator.model_name,
                    "embedding_model": answer.embedding_model,
                    "specialties": self.classifier.detect_specialties(query),
                },
            )
        except Exception as e:
            logger.warning("Failed to save chat messages for session %s: %s", session_id, e)
