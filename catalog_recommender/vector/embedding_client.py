"""
Resilient embedding client: circuit breaker, bounded retry with exponential
backoff for transient failures, response validation and call metrics.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

import numpy as np

from ..core.cancellation import CancellationToken
from ..core.circuit_breaker import CircuitBreaker
from ..core.errors import (
    CircuitOpenError,
    DimensionMismatchError,
    MalformedResponseError,
    OperationCancelledError,
    TransientProviderError,
)
from ..util.logging import logger
from .embeddings import IEmbeddingProvider


def is_transient(error: Exception) -> bool:
    """Only network errors, 5xx, timeouts and rate limits are worth retrying."""
    return isinstance(error, TransientProviderError)


class EmbeddingMetrics:
    """Thread-safe counters describing embedding call outcomes."""

    def __init__(self):
        self._lock = threading.Lock()
        self.calls = 0
        self.successes = 0
        self.rejected = 0
        self.retries = 0
        self.texts_embedded = 0
        self.failures: Dict[str, int] = {}
        self.total_latency_ms = 0.0
        self.last_latency_ms = 0.0

    def record_success(self, batch_size: int, latency_ms: float) -> None:
        with self._lock:
            self.calls += 1
            self.successes += 1
            self.texts_embedded += batch_size
            self.total_latency_ms += latency_ms
            self.last_latency_ms = latency_ms

    def record_failure(self, error: Exception, latency_ms: float) -> None:
        with self._lock:
            self.calls += 1
            name = type(error).__name__
            self.failures[name] = self.failures.get(name, 0) + 1
            self.total_latency_ms += latency_ms
            self.last_latency_ms = latency_ms

    def record_rejected(self) -> None:
        with self._lock:
            self.rejected += 1

    def record_retry(self) -> None:
        with self._lock:
            self.retries += 1

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "calls": self.calls,
                "successes": self.successes,
                "rejected": self.rejected,
                "retries": self.retries,
                "texts_embedded": self.texts_embedded,
                "failures": dict(self.failures),
                "avg_latency_ms": round(self.total_latency_ms / self.calls, 2) if self.calls else 0.0,
                "last_latency_ms": round(self.last_latency_ms, 2),
            }


class EmbeddingClient:
    """Obtains embeddings for ordered batches of texts.

    Callers are responsible for chunking to `max_batch_size`. Each call goes
    through the circuit breaker once; inside it, transient failures are
    retried up to `max_attempts` total attempts with exponential backoff
    (`backoff_base_sec * 2 ** (attempt - 1)`), or the provider's Retry-After
    hint when that is longer. Auth and other non-transient errors surface on
    the first attempt.
    """

    def __init__(self, provider: IEmbeddingProvider, breaker: CircuitBreaker = None,
                 dimension: int = None, max_attempts: int = 3, backoff_base_sec: float = 2.0,
                 max_retry_after_sec: float = 60.0, max_batch_size: int = 600,
                 sleep: Callable[[float], None] = time.sleep):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1: {max_attempts}")

        self.provider = provider
        self.breaker = breaker
        self.dimension = dimension or provider.get_dimension()
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.max_retry_after_sec = max_retry_after_sec
        self.max_batch_size = max_batch_size
        self.metrics = EmbeddingMetrics()
        self._sleep = sleep

    def embed(self, texts: List[str], cancel_token: CancellationToken = None,
              strict: bool = True) -> List[np.ndarray]:
        """
        Embed texts, returning float32 vectors aligned with `texts`.

        Args:
            texts: Ordered texts, at most `max_batch_size`
            cancel_token: Optional deadline/cancellation for the whole call
            strict: Raise DimensionMismatchError for any vector of the wrong
                length. With strict=False such vectors are returned as-is for
                the caller to reject individually.

        Returns:
            List of 1-D float32 numpy arrays
        """
        texts = list(texts)
        if not texts:
            return []
        if len(texts) > self.max_batch_size:
            raise ValueError(f"Batch of {len(texts)} exceeds max_batch_size {self.max_batch_size}")

        attempts = [0]
        started = time.monotonic()
        try:
            if self.breaker is not None:
                raw = self.breaker.call(self._embed_with_retry, texts, cancel_token, attempts)
            else:
                raw = self._embed_with_retry(texts, cancel_token, attempts)
        except CircuitOpenError:
            self.metrics.record_rejected()
            logger.log_embedding_call(len(texts), 0.0, "rejected", attempts=0)
            raise
        except Exception as e:
            latency_ms = (time.monotonic() - started) * 1000
            self.metrics.record_failure(e, latency_ms)
            logger.log_embedding_call(len(texts), latency_ms, "failed", attempts[0], {
                "error_type": type(e).__name__,
                "error": str(e)[:200]
            })
            raise

        latency_ms = (time.monotonic() - started) * 1000
        self.metrics.record_success(len(texts), latency_ms)
        logger.log_embedding_call(len(texts), latency_ms, "success", attempts[0])

        return self._to_vectors(raw, len(texts), strict)

    def embed_one(self, text: str, cancel_token: CancellationToken = None) -> np.ndarray:
        return self.embed([text], cancel_token=cancel_token)[0]

    def _embed_with_retry(self, texts: List[str], cancel_token: Optional[CancellationToken], attempts: List[int]):
        for attempt in range(1, self.max_attempts + 1):
            attempts[0] = attempt
            timeout = self._call_timeout(cancel_token)
            try:
                return self.provider.embed_texts(texts, timeout=timeout)
            except Exception as e:
                if not is_transient(e) or attempt == self.max_attempts:
                    raise
                delay = self._backoff_delay(attempt, e)
                self.metrics.record_retry()
                logger.warning(
                    f"Transient embedding failure (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                self._wait(delay, cancel_token)

    def _backoff_delay(self, attempt: int, error: Exception) -> float:
        delay = self.backoff_base_sec * (2 ** (attempt - 1))
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.max_retry_after_sec))
        return delay

    def _call_timeout(self, cancel_token: Optional[CancellationToken]) -> Optional[float]:
        if cancel_token is None:
            return None
        cancel_token.raise_if_cancelled("embedding call")
        return cancel_token.remaining()

    def _wait(self, delay: float, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is None:
            self._sleep(delay)
            return
        if cancel_token.wait(delay):
            raise OperationCancelledError("embedding call cancelled during backoff")

    def _to_vectors(self, raw, expected: int, strict: bool) -> List[np.ndarray]:
        if len(raw) != expected:
            raise MalformedResponseError(f"Provider returned {len(raw)} vectors for {expected} inputs")

        vectors = []
        for values in raw:
            vector = np.asarray(values, dtype=np.float32).ravel()
            if strict and vector.shape[0] != self.dimension:
                raise DimensionMismatchError(self.dimension, vector.shape[0])
            vectors.append(vector)
        return vectors
