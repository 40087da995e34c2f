"""
PedsQuery Exceptions

Failures that cross module boundaries. Validation rejections and empty
evidence are not exceptions; they are ordinary answers built by the pipeline.
"""


class PedsQueryError(Exception):
    """Base class for all PedsQuery errors."""

    pass


class ConnectivityError(PedsQueryError):
    """Raised when the search backend is unreachable or misbehaves."""

    pass


class GenerationError(PedsQueryError):
    """Raised when the generation backend fails mid-call or mid-stream."""

    pass


class EmbeddingBackendError(PedsQueryError):
    """Raised by an embedding backend; always recovered by the generator."""

    pass


class DimensionMismatchError(PedsQueryError, ValueError):
    """Raised when two vectors (or a vector and the index) disagree in length."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class PersistenceError(PedsQueryError):
    """Raised by a chat store when a session or message cannot be saved."""

    pass
