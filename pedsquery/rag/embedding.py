"""
Embedding Generation for PedsQuery

Turns query and chunk text into D-dimensional vectors:
- Primary backend: Hugging Face feature-extraction API, or a local
  sentence-transformers model (EMBEDDING_BACKEND=local)
- Fallback: deterministic hash embedding, used whenever the primary
  backend fails or returns a vector of the wrong dimension

embed() never raises for ordinary text. Callers can tell which path was
taken from EmbeddingResult.model.
"""

import asyncio
import hashlib
import logging
import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import httpx
import numpy as np

from pedsquery.errors import DimensionMismatchError, EmbeddingBackendError
from pedsquery.models import EMBEDDING_DIMENSION
from pedsquery.rag.normalizer import normalize

logger = logging.getLogger(__name__)

# Model configuration
DEFAULT_EMBEDDING_MODEL = os.environ.get(
    "EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
)
EMBEDDING_BACKEND = os.environ.get("EMBEDDING_BACKEND", "huggingface")
HF_API_KEY = os.environ.get("HF_API_KEY", "")
HF_API_URL = os.environ.get(
    "HF_API_URL", "https://api-inference.huggingface.co/pipeline/feature-extraction"
)
EMBEDDING_TIMEOUT = float(os.environ.get("EMBEDDING_TIMEOUT", "30"))

FALLBACK_MODEL_NAME = "fallback-text-embedding"
FALLBACK_WINDOW = 10


@dataclass
class EmbeddingResult:
    """A vector plus the model that produced it."""

    vector: list[float]
    model: str
    token_count: int


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


# ============================================
# Backends
# ============================================


class EmbeddingBackend(Protocol):
    model_name: str

    async def embed(self, text: str) -> list[float]: ...


def _flatten_response(payload: Any) -> list[float]:
    """Accept a flat numeric array, or a nested one flattened one level."""
    if not isinstance(payload, list) or not payload:
        raise EmbeddingBackendError("Embedding response is not a non-empty array")
    if isinstance(payload[0], list):
        payload = [value for row in payload for value in row]
    vector: list[float] = []
    for value in payload:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingBackendError("Embedding response contains non-numeric values")
        vector.append(float(value))
    return vector


class HuggingFaceEmbeddingBackend:
    """Feature-extraction over the Hugging Face inference API."""

    def __init__(
        self,
        model_name: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = EMBEDDING_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model_name = model_name or DEFAULT_EMBEDDING_MODEL
        self.api_key = api_key if api_key is not None else HF_API_KEY
        self.base_url = (base_url or HF_API_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"inputs": text, "options": {"wait_for_model": True}}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/{self.model_name}",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingBackendError(
                f"Embedding API returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingBackendError(f"Embedding API request failed: {e}") from e

        return _flatten_response(data)


@lru_cache(maxsize=1)
def _load_st_model(model_name: str):
    """Load sentence-transformers model once and cache it."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading sentence-transformers model: %s", model_name)
    model = SentenceTransformer(model_name)
    logger.info("Model loaded, dimension: %d", model.get_sentence_embedding_dimension())
    return model


class SentenceTransformerBackend:
    """Local sentence-transformers model; requires the 'local' extra."""

    def __init__(self, model_name: str | None = None):
        self.model_name = model_name or DEFAULT_EMBEDDING_MODEL

    async def embed(self, text: str) -> list[float]:
        try:
            model = _load_st_model(self.model_name)
            # encode is CPU-bound, keep it off the event loop
            vector = await asyncio.to_thread(
                model.encode, text, show_progress_bar=False
            )
        except Exception as e:
            raise EmbeddingBackendError(f"Local embedding failed: {e}") from e
        return [float(v) for v in vector]


def default_backend() -> EmbeddingBackend:
    """Pick the primary backend from EMBEDDING_BACKEND."""
    if EMBEDDING_BACKEND == "local":
        return SentenceTransformerBackend()
    return HuggingFaceEmbeddingBackend()


# ============================================
# Fallback
# ============================================


def _stable_hash(token: str) -> int:
    return int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:4], "big")


def fallback_embedding(text: str, dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """Deterministic hash embedding.

    Each whitespace token adds weight 1/(offset+1) to FALLBACK_WINDOW
    contiguous dimensions starting at hash(token) mod (dimension - window).
    The sum is L2-normalized; text without tokens maps to the zero vector.
    """
    vector = np.zeros(dimension, dtype=np.float64)
    span = dimension - FALLBACK_WINDOW
    for token in text.lower().split():
        start = _stable_hash(token) % span
        for offset in range(FALLBACK_WINDOW):
            vector[start + offset] += 1.0 / (offset + 1)

    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector = vector / norm
    return vector.tolist()


# ============================================
# EmbeddingGenerator
# ============================================


class EmbeddingGenerator:
    """Embeds text with the primary backend, degrading to the hash fallback."""

    def __init__(
        self,
        backend: EmbeddingBackend | None = None,
        dimension: int = EMBEDDING_DIMENSION,
    ):
        self.backend = backend or default_backend()
        self.dimension = dimension

    async def embed(self, text: str) -> EmbeddingResult:
        normalized = normalize(text)
        token_count = estimate_tokens(normalized)

        try:
            vector = await self.backend.embed(normalized)
            if len(vector) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vector))
            return EmbeddingResult(
                vector=vector,
                model=self.backend.model_name,
                token_count=token_count,
            )
        except Exception as e:
            logger.warning(
                "Embedding backend %s failed, using fallback embedding: %s",
                self.backend.model_name,
                e,
            )

        return EmbeddingResult(
            vector=fallback_embedding(normalized, self.dimension),
            model=FALLBACK_MODEL_NAME,
            token_count=token_count,
        )

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed each text independently; one failure does not affect the rest."""
        return [await self.embed(t) for t in texts]

    async def validate_backend(self) -> bool:
        """Return True if the primary backend yields a vector of the right size."""
        try:
            vector = await self.backend.embed("test medical query")
        except Exception as e:
            logger.warning("Embedding backend validation failed: %s", e)
            return False
        if len(vector) != self.dimension:
            logger.warning(
                "Embedding backend returned dimension %d, expected %d",
                len(vector),
                self.dimension,
            )
            return False
        return True
