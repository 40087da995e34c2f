"""
PedsQuery - FastAPI Application Entry Point

Question answering over the Nelson Textbook of Pediatrics.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import ValidationError

from pedsquery import __version__
from pedsquery.api.schemas import QueryRequest, SessionCreateRequest
from pedsquery.config import RAGConfig, merge_config
from pedsquery.db.chat_store import ChatStore
from pedsquery.errors import ConnectivityError, PersistenceError
from pedsquery.observability.metrics import get_metrics_text, reset_metrics
from pedsquery.pipelines.qa import QAPipeline

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = os.environ.get(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
).split(",")


def build_pipeline() -> tuple[QAPipeline, ChatStore]:
    """Wire the production components. Opens no connections."""
    from pedsquery.db.chat_store import PostgresChatStore
    from pedsquery.db.postgres import get_session_maker
    from pedsquery.db.search import PostgresSearchBackend
    from pedsquery.llm.mistral_client import MistralClient
    from pedsquery.llm.response_generator import ResponseGenerator
    from pedsquery.rag.embedding import EmbeddingGenerator
    from pedsquery.rag.retriever import Retriever

    session_maker = get_session_maker()
    chat_store = PostgresChatStore(session_maker)
    pipeline = QAPipeline(
        retriever=Retriever(PostgresSearchBackend(session_maker)),
        embedder=EmbeddingGenerator(),
        generator=ResponseGenerator(MistralClient()),
        chat_store=chat_store,
    )
    return pipeline, chat_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    logger.info("Starting PedsQuery API v%s", __version__)

    try:
        app.state.pipeline, app.state.chat_store = build_pipeline()
        logger.info("QA pipeline initialized")
    except Exception as e:
        logger.warning("QA pipeline initialization failed: %s", e)
        app.state.pipeline = None
        app.state.chat_store = None

    yield

    logger.info("Shutting down PedsQuery API")
    from pedsquery.db.postgres import close_db

    await close_db()


app = FastAPI(
    title="PedsQuery",
    description="Question answering over the Nelson Textbook of Pediatrics",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _pipeline() -> QAPipeline:
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="QA pipeline not available",
        )
    return pipeline


def _chat_store() -> ChatStore:
    store = getattr(app.state, "chat_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat store not available",
        )
    return store


def _config_for(request: QueryRequest, pipeline: QAPipeline) -> RAGConfig:
    try:
        return merge_config(request.config_overrides(), pipeline.config)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        ) from e


# ============================================
# Health Check Endpoints
# ============================================


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "version": __version__,
        "service": "pedsquery-api",
    }


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, Any]:
    """Readiness check with dependency status."""
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        return {"ready": False, "checks": {"pipeline": "unavailable"}}

    connection = await pipeline.retriever.check_connection()
    embedding_ok = await pipeline.embedder.validate_backend()
    return {
        "ready": connection.connected,
        "checks": {
            "database": "ok" if connection.connected else "unavailable",
            "chunks": connection.chunk_count,
            "embedding_backend": "ok" if embedding_ok else "fallback",
        },
    }


# ============================================
# API v1 Routes
# ============================================


@app.post("/api/v1/query", tags=["Query"])
async def query_endpoint(request: QueryRequest) -> dict[str, Any]:
    """Answer a pediatric question with citations from the textbook."""
    pipeline = _pipeline()
    config = _config_for(request, pipeline)
    answer = await pipeline.ask_question(
        request.question,
        session_id=request.session_id,
        history=request.history_turns(),
        config=config,
    )
    return answer.to_dict()


@app.post("/api/v1/query/stream", tags=["Query"])
async def query_stream_endpoint(request: QueryRequest):
    """Answer a question as Server-Sent Events.

    Frames: {"type": "progress"|"increment", "text": ...} while working,
    one {"type": "final", "answer": {...}}, then [DONE].
    """
    pipeline = _pipeline()
    config = _config_for(request, pipeline)

    async def event_stream():
        async for event in pipeline.ask_question_streaming(
            request.question,
            session_id=request.session_id,
            history=request.history_turns(),
            config=config,
        ):
            if event.kind == "final":
                payload = {"type": "final", "answer": event.answer.to_dict()}
            else:
                payload = {"type": event.kind, "text": event.text}
            yield f"data: {json.dumps(payload)}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/api/v1/status", tags=["Corpus"])
async def corpus_status() -> dict[str, Any]:
    connection = await _pipeline().retriever.check_connection()
    return {
        "connected": connection.connected,
        "chunk_count": connection.chunk_count,
        "sample_chapter": connection.sample_chapter,
        "error": connection.error,
    }


@app.get("/api/v1/chapters", tags=["Corpus"])
async def list_chapters() -> dict[str, Any]:
    try:
        chapters = await _pipeline().retriever.list_chapters()
    except ConnectivityError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return {"chapters": chapters}


@app.get("/api/v1/chapters/{chapter}/chunks", tags=["Corpus"])
async def chapter_chunks(chapter: str, limit: int = 20) -> dict[str, Any]:
    if limit < 1 or limit > 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be between 1 and 100",
        )
    try:
        chunks = await _pipeline().retriever.chapter_chunks(chapter, limit)
    except ConnectivityError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return {
        "chapter": chapter,
        "chunks": [
            {
                "id": c.id,
                "section": c.section,
                "page_number": c.page_number,
                "chunk_index": c.chunk_index,
                "content": c.content,
            }
            for c in chunks
        ],
    }


# ============================================
# Chat Sessions
# ============================================


@app.post("/api/v1/sessions", tags=["Sessions"], status_code=status.HTTP_201_CREATED)
async def create_session(request: SessionCreateRequest) -> dict[str, Any]:
    try:
        session_id = await _chat_store().create_session(request.title, request.user_id)
    except PersistenceError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return {"id": session_id, "title": request.title}


@app.get("/api/v1/sessions", tags=["Sessions"])
async def list_sessions(limit: int = 10) -> dict[str, Any]:
    try:
        sessions = await _chat_store().get_sessions(limit)
    except PersistenceError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return {"sessions": sessions}


@app.get("/api/v1/sessions/{session_id}/messages", tags=["Sessions"])
async def session_messages(session_id: str) -> dict[str, Any]:
    try:
        messages = await _chat_store().get_messages(session_id)
    except PersistenceError as e:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return {"session_id": session_id, "messages": messages}


# ============================================
# Monitoring
# ============================================


@app.get("/metrics", tags=["Monitoring"])
async def metrics_endpoint() -> PlainTextResponse:
    return PlainTextResponse(get_metrics_text(), media_type="text/plain")


@app.post("/metrics/reset", tags=["Monitoring"])
async def metrics_reset() -> dict[str, str]:
    reset_metrics()
    return {"status": "reset"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if app.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pedsquery.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
