"""Custom exceptions for chatrecall."""

from typing import Optional


class ImportAbortedError(Exception):
    """Raised when an import cannot proceed at all (nothing was persisted)."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Import of {source} aborted: {reason}")


class EmbeddingError(Exception):
    """Base exception for embedding failures."""

    pass


class EmbeddingNotConfiguredError(EmbeddingError):
    """Raised when no API key is available for the embedding endpoint."""

    def __init__(self) -> None:
        super().__init__(
            "Embedding service not configured. Please add your OpenAI API key."
        )


class EmptyTextError(EmbeddingError):
    """Raised when asked to embed text that is blank after trimming."""

    def __init__(self, index: Optional[int] = None):
        self.index = index
        message = "Cannot generate embedding for empty text"
        if index is not None:
            message += f" (input {index})"
        super().__init__(message)


class EmbeddingAuthError(EmbeddingError):
    """Raised when the upstream rejects the API key."""

    pass


class EmbeddingRateLimitError(EmbeddingError):
    """Raised when the upstream rate-limits the request."""

    pass


class EmbeddingServerError(EmbeddingError):
    """Raised for any other non-success upstream response."""

    def __init__(self, status_code: Optional[int], message: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(
            f"Embedding API error ({status_code}): {message or 'Unknown error'}"
        )


class EmbeddingProtocolError(EmbeddingError):
    """Raised when a response does not line up with the request."""

    pass


class DimensionMismatchError(ValueError):
    """Raised when vectors from different embedding models are compared."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
