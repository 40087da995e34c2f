"""
PedsQuery - Grounded Question Answering over the Nelson Textbook of Pediatrics

A retrieval-augmented generation (RAG) system that answers clinical questions
using only passages retrieved from a pre-built textbook corpus.

Features:
- Safety gate for emergency and personal-advice queries
- Vector, chapter-scoped and hybrid (vector + lexical) retrieval
- Deterministic fallback embeddings when the embedding backend is down
- Blocking and streamed answer generation with citations
"""

__version__ = "0.1.0"
__author__ = "PedsQuery Team"
