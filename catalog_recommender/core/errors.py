"""
Error taxonomy for the embedding, indexing and search layers.
"""

from typing import Optional


class RecommenderError(Exception):
    """Base class for all recommender errors."""
    pass


class EmbeddingError(RecommenderError):
    """Base class for failures obtaining embeddings from a provider."""
    pass


class ServiceUnavailableError(EmbeddingError):
    """Retryable condition: the embedding service is currently unavailable.

    Callers should present "search temporarily unavailable" and try again
    later rather than serving results without a query embedding.
    """
    retryable = True


class TransientProviderError(ServiceUnavailableError):
    """Network error, 5xx, provider timeout or rate limit."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class CircuitOpenError(ServiceUnavailableError):
    """The circuit breaker rejected the call without contacting the provider."""

    def __init__(self, dependency: str, retry_in: Optional[float] = None):
        message = f"embedding service degraded: circuit '{dependency}' is open"
        if retry_in is not None:
            message += f" (retry in {retry_in:.1f}s)"
        super().__init__(message)
        self.dependency = dependency
        self.retry_in = retry_in


class AuthError(EmbeddingError):
    """401/403-class failure. Fatal: never retried, aborts batch runs."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRequestError(EmbeddingError):
    """Non-transient client error (4xx other than auth and rate limit)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(EmbeddingError):
    """Provider response could not be aligned with the request."""
    pass


class DimensionMismatchError(RecommenderError):
    """A vector does not have the configured dimension."""

    def __init__(self, expected: int, actual: int, record_id: Optional[str] = None):
        message = f"expected {expected} dimensions, got {actual}"
        if record_id is not None:
            message = f"record '{record_id}': {message}"
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.record_id = record_id


class OperationCancelledError(RecommenderError):
    """The operation's cancellation token fired or its deadline passed."""
    pass
