"""
PedsQuery Test Configuration

Pytest fixtures and configuration for the test suite.
"""

import math
from collections.abc import Generator

import pytest

from pedsquery.errors import ConnectivityError, GenerationError, PersistenceError
from pedsquery.llm.response_generator import ResponseGenerator
from pedsquery.models import EMBEDDING_DIMENSION, Chunk, ChatTurn
from pedsquery.observability.metrics import reset_metrics
from pedsquery.pipelines.qa import QAPipeline
from pedsquery.rag.embedding import EmbeddingGenerator
from pedsquery.rag.retriever import Retriever
from pedsquery.rag.search_backend import ConnectionStatus, InMemorySearchBackend, ScoredChunk

# ============================================
# Vector helpers
# ============================================


def axis_vector(axis: int = 0) -> list[float]:
    """Unit vector along one axis."""
    vector = [0.0] * EMBEDDING_DIMENSION
    vector[axis] = 1.0
    return vector


def vector_with_similarity(similarity: float, axis: int) -> list[float]:
    """Unit vector whose cosine similarity to axis_vector(0) is `similarity`."""
    vector = [0.0] * EMBEDDING_DIMENSION
    vector[0] = similarity
    vector[axis] = math.sqrt(max(0.0, 1.0 - similarity**2))
    return vector


def make_chunk(
    chunk_id: str,
    content: str,
    chapter: str = "Cardiology",
    section: str | None = "Kawasaki Disease",
    page: int | None = 2310,
    index: int | None = 0,
    embedding: list[float] | None = None,
    metadata: dict | None = None,
) -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content,
        chapter_title=chapter,
        section_title=section,
        page_number=page,
        chunk_index=index,
        embedding=embedding,
        metadata=metadata or {},
    )


# ============================================
# Fakes
# ============================================


class StubSearchBackend:
    """SearchBackend returning canned hits and counting every call."""

    def __init__(
        self,
        vector_hits: list[ScoredChunk] | None = None,
        text_hits: list[ScoredChunk] | None = None,
        connected: bool = True,
        text_error: Exception | None = None,
    ):
        self.vector_hits = vector_hits or []
        self.text_hits = text_hits or []
        self.connected = connected
        self.text_error = text_error
        self.calls: list[tuple] = []

    async def vector_search(self, query_embedding, threshold, limit, chapter=None):
        self.calls.append(("vector_search", threshold, limit, chapter))
        hits = [h for h in self.vector_hits if chapter is None or h.chunk.chapter_title == chapter]
        return hits if limit is None else hits[:limit]

    async def text_search(self, query, limit):
        self.calls.append(("text_search", query, limit))
        if self.text_error is not None:
            raise self.text_error
        return self.text_hits if limit is None else self.text_hits[:limit]

    async def get_chapter_chunks(self, chapter, limit=20):
        self.calls.append(("get_chapter_chunks", chapter, limit))
        return []

    async def list_chapters(self):
        self.calls.append(("list_chapters",))
        return []

    async def check_connection(self):
        self.calls.append(("check_connection",))
        if not self.connected:
            return ConnectionStatus(connected=False, error="connection refused")
        return ConnectionStatus(
            connected=True, chunk_count=len(self.vector_hits), sample_chapter="Cardiology"
        )


class FakeEmbeddingBackend:
    """Embedding backend returning a fixed vector, or raising."""

    def __init__(self, vector=None, error: Exception | None = None, model_name="fake-embedding"):
        self.vector = vector if vector is not None else axis_vector(0)
        self.error = error
        self.model_name = model_name
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeChatClient:
    """Stands in for MistralClient; records every message list it receives."""

    def __init__(
        self,
        content: str = "Answer drawn from the Nelson Textbook of Pediatrics.",
        fragments: list[str] | None = None,
        error: Exception | None = None,
        fail_after: int | None = None,
    ):
        self.model = "fake-mistral"
        self.content = content
        self.fragments = fragments if fragments is not None else _split_fragments(content)
        self.error = error
        self.fail_after = fail_after
        self.calls: list[list[dict[str, str]]] = []

    async def chat(self, messages, temperature=0.1, max_tokens=2048):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.content

    async def chat_stream(self, messages, temperature=0.1, max_tokens=2048):
        self.calls.append(messages)
        if self.error is not None and self.fail_after is None:
            raise self.error
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error or GenerationError("stream interrupted")
            yield fragment


def _split_fragments(content: str) -> list[str]:
    words = content.split(" ")
    return [w + " " for w in words[:-1]] + [words[-1]]


class FakeChatStore:
    """In-memory ChatStore; optionally fails every save."""

    def __init__(self, fail_saves: bool = False, history: list[ChatTurn] | None = None):
        self.fail_saves = fail_saves
        self.history = history or []
        self.saved: list[dict] = []
        self.sessions: dict[str, str] = {}

    async def create_session(self, title, user_id=None):
        session_id = f"session-{len(self.sessions) + 1}"
        self.sessions[session_id] = title
        return session_id

    async def save_message(
        self, session_id, role, content, citations=None, confidence=None, metadata=None
    ):
        if self.fail_saves:
            raise PersistenceError("database unavailable")
        self.saved.append(
            {
                "session_id": session_id,
                "role": role,
                "content": content,
                "citations": citations,
                "confidence": confidence,
                "metadata": metadata,
            }
        )
        return f"message-{len(self.saved)}"

    async def get_sessions(self, limit=10):
        return [{"id": sid, "title": title} for sid, title in self.sessions.items()][:limit]

    async def get_messages(self, session_id):
        return [m for m in self.saved if m["session_id"] == session_id]

    async def get_recent_messages(self, session_id, limit):
        return self.history[-limit:]


# ============================================
# Fixtures
# ============================================


@pytest.fixture(autouse=True)
def clean_metrics() -> Generator[None, None, None]:
    """Clear in-process metrics before each test."""
    reset_metrics()
    yield


@pytest.fixture
def query_vector() -> list[float]:
    return axis_vector(0)


@pytest.fixture
def sample_chunks() -> list[Chunk]:
    """Four cardiology/neonatology chunks with known similarities to query_vector."""
    return [
        make_chunk(
            "kd-1",
            "Kawasaki disease is an acute vasculitis of childhood. Intravenous "
            "immunoglobulin reduces the risk of coronary artery aneurysms.",
            index=0,
            embedding=vector_with_similarity(0.9, 1),
        ),
        make_chunk(
            "kd-2",
            "Aspirin is given alongside immunoglobulin in the acute phase of treatment.",
            index=1,
            embedding=vector_with_similarity(0.8, 2),
        ),
        make_chunk(
            "neo-1",
            "Neonatal jaundice usually appears on the second or third day of life.",
            chapter="Neonatology",
            section="Jaundice",
            page=1012,
            index=0,
            embedding=vector_with_similarity(0.6, 3),
        ),
        make_chunk(
            "neo-2",
            "Phototherapy lowers serum bilirubin in most term infants.",
            chapter="Neonatology",
            section="Jaundice",
            page=1013,
            index=1,
        ),
    ]


@pytest.fixture
def memory_backend(sample_chunks) -> InMemorySearchBackend:
    return InMemorySearchBackend(sample_chunks)


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def chat_store() -> FakeChatStore:
    return FakeChatStore()


@pytest.fixture
def make_pipeline(memory_backend, chat_client, chat_store):
    """Build a QAPipeline from fakes; any collaborator can be swapped."""

    def _make(
        backend=None,
        embedding_backend=None,
        client=None,
        store=chat_store,
        config=None,
    ) -> QAPipeline:
        return QAPipeline(
            retriever=Retriever(backend or memory_backend),
            embedder=EmbeddingGenerator(embedding_backend or FakeEmbeddingBackend()),
            generator=ResponseGenerator(client or chat_client),
            chat_store=store,
            config=config,
        )

    return _make


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def similar_vector():
    return vector_with_similarity


@pytest.fixture
def stub_backend_factory():
    return StubSearchBackend


@pytest.fixture
def embedding_backend_factory():
    return FakeEmbeddingBackend


@pytest.fixture
def chat_client_factory():
    return FakeChatClient


@pytest.fixture
def chat_store_factory():
    return FakeChatStore


@pytest.fixture
def connectivity_error() -> ConnectivityError:
    return ConnectivityError("Database query failed: connection reset")


# ============================================
# Marker Configuration
# ============================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "requires_db: test requires database connection")
