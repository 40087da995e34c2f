"""
Cosine Similarity for PedsQuery

Mirrors the score the pgvector backend reports (1 - cosine distance) so
in-memory ranking and database ranking agree.
"""

from collections.abc import Sequence
from typing import TypeVar

import numpy as np

from pedsquery.errors import DimensionMismatchError

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    value = float(np.dot(va, vb)) / magnitude
    # Clamp floating-point drift
    return max(-1.0, min(1.0, value))


def rank_by_similarity(
    query: Sequence[float],
    candidates: Sequence[tuple[T, Sequence[float] | None]],
) -> list[tuple[T, float]]:
    """Rank (key, vector) candidates by similarity to query, best first.

    Candidates without a vector are skipped.
    """
    scored = [
        (key, cosine_similarity(query, vector))
        for key, vector in candidates
        if vector is not None and len(vector) > 0
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored
