"""
PedsQuery RAG Module

Query-time retrieval components:
- Text normalization and chunking
- Embedding generation with a deterministic fallback
- Similarity, search backends and hybrid retrieval
- Query classification and context assembly
"""

from pedsquery.rag.chunker import TextbookChunker
from pedsquery.rag.classifier import QueryClassifier, QueryComplexity, SafetyVerdict
from pedsquery.rag.context import assemble_context, fit_to_budget
from pedsquery.rag.embedding import (
    FALLBACK_MODEL_NAME,
    EmbeddingGenerator,
    EmbeddingResult,
    fallback_embedding,
)
from pedsquery.rag.normalizer import QueryPreprocessor, normalize
from pedsquery.rag.retriever import Retriever
from pedsquery.rag.search_backend import (
    ConnectionStatus,
    InMemorySearchBackend,
    ScoredChunk,
    SearchBackend,
)
from pedsquery.rag.similarity import cosine_similarity, rank_by_similarity

__all__ = [
    # Text
    "normalize",
    "QueryPreprocessor",
    "TextbookChunker",
    # Embedding
    "EmbeddingGenerator",
    "EmbeddingResult",
    "FALLBACK_MODEL_NAME",
    "fallback_embedding",
    # Retrieval
    "cosine_similarity",
    "rank_by_similarity",
    "SearchBackend",
    "InMemorySearchBackend",
    "ScoredChunk",
    "ConnectionStatus",
    "Retriever",
    # Classification & context
    "QueryClassifier",
    "QueryComplexity",
    "SafetyVerdict",
    "assemble_context",
    "fit_to_budget",
]
