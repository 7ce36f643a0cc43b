"""
Tests for the resilient embedding client: retry policy, breaker integration,
response validation and metrics.
"""

import pytest
import numpy as np
from unittest.mock import MagicMock

from catalog_recommender.core.cancellation import CancellationToken
from catalog_recommender.core.circuit_breaker import BreakerState, CircuitBreaker
from catalog_recommender.core.errors import (
    AuthError,
    CircuitOpenError,
    DimensionMismatchError,
    MalformedResponseError,
    OperationCancelledError,
    ProviderRequestError,
    ServiceUnavailableError,
    TransientProviderError,
)
from catalog_recommender.vector.embedding_client import EmbeddingClient, is_transient

DIM = 4


def vectors_for(texts, dimension=DIM):
    return [[float(i + 1)] + [0.0] * (dimension - 1) for i in range(len(texts))]


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.get_dimension.return_value = DIM
    provider.embed_texts.side_effect = lambda texts, timeout=None: vectors_for(texts)
    return provider


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def client(provider, sleep):
    return EmbeddingClient(provider, max_attempts=3, backoff_base_sec=2.0, sleep=sleep)


class TestEmbed:
    """Test successful embedding calls."""

    def test_returns_float32_vectors_in_order(self, client, provider):
        vectors = client.embed(["a", "b", "c"])

        assert len(vectors) == 3
        assert all(v.dtype == np.float32 for v in vectors)
        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0]
        provider.embed_texts.assert_called_once()

    def test_empty_batch_skips_provider(self, client, provider):
        assert client.embed([]) == []
        provider.embed_texts.assert_not_called()

    def test_oversized_batch_rejected(self, provider, sleep):
        client = EmbeddingClient(provider, max_batch_size=2, sleep=sleep)
        with pytest.raises(ValueError):
            client.embed(["a", "b", "c"])

    def test_embed_one(self, client):
        vector = client.embed_one("hello")
        assert vector.shape == (DIM,)

    def test_dimension_from_provider(self, client):
        assert client.dimension == DIM


class TestRetry:
    """Test bounded retry with exponential backoff."""

    def test_transient_then_success(self, client, provider, sleep):
        provider.embed_texts.side_effect = [
            TransientProviderError("503", status_code=503),
            TransientProviderError("timeout"),
            vectors_for(["a"]),
        ]

        vectors = client.embed(["a"])

        assert len(vectors) == 1
        assert provider.embed_texts.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]
        assert client.metrics.snapshot()["retries"] == 2

    def test_gives_up_after_max_attempts(self, client, provider, sleep):
        provider.embed_texts.side_effect = TransientProviderError("503", status_code=503)

        with pytest.raises(TransientProviderError):
            client.embed(["a"])

        assert provider.embed_texts.call_count == 3
        assert sleep.call_count == 2

    def test_retry_after_extends_backoff(self, client, provider, sleep):
        provider.embed_texts.side_effect = [
            TransientProviderError("429", status_code=429, retry_after=15),
            vectors_for(["a"]),
        ]

        client.embed(["a"])

        sleep.assert_called_once_with(15)

    def test_retry_after_is_capped(self, client, provider, sleep):
        provider.embed_texts.side_effect = [
            TransientProviderError("429", status_code=429, retry_after=3600),
            vectors_for(["a"]),
        ]

        client.embed(["a"])

        sleep.assert_called_once_with(60.0)

    def test_short_retry_after_keeps_backoff(self, client, provider, sleep):
        provider.embed_texts.side_effect = [
            TransientProviderError("429", status_code=429, retry_after=0.5),
            vectors_for(["a"]),
        ]

        client.embed(["a"])

        sleep.assert_called_once_with(2.0)

    @pytest.mark.parametrize("error", [
        AuthError("denied", status_code=401),
        ProviderRequestError("bad input", status_code=400),
    ])
    def test_non_transient_not_retried(self, client, provider, sleep, error):
        provider.embed_texts.side_effect = error

        with pytest.raises(type(error)):
            client.embed(["a"])

        assert provider.embed_texts.call_count == 1
        sleep.assert_not_called()

    def test_is_transient(self):
        assert is_transient(TransientProviderError("x"))
        assert not is_transient(AuthError("x"))
        assert not is_transient(ValueError("x"))


class TestBreakerIntegration:
    """Test the breaker wrapping each logical call."""

    def test_exhausted_retries_count_once(self, provider, sleep):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_sec=60)
        client = EmbeddingClient(provider, breaker=breaker, sleep=sleep)
        provider.embed_texts.side_effect = TransientProviderError("503", status_code=503)

        with pytest.raises(TransientProviderError):
            client.embed(["a"])

        assert breaker.state.consecutive_failures == 1
        assert breaker.state.state == BreakerState.CLOSED

    def test_open_breaker_rejects_without_provider_call(self, provider, sleep):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_sec=60)
        client = EmbeddingClient(provider, breaker=breaker, max_attempts=1, sleep=sleep)
        provider.embed_texts.side_effect = TransientProviderError("503", status_code=503)

        with pytest.raises(TransientProviderError):
            client.embed(["a"])
        provider.embed_texts.reset_mock()

        with pytest.raises(CircuitOpenError) as exc_info:
            client.embed(["a"])

        assert isinstance(exc_info.value, ServiceUnavailableError)
        provider.embed_texts.assert_not_called()
        assert client.metrics.snapshot()["rejected"] == 1

    def test_auth_error_does_not_trip(self, provider, sleep):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_sec=60)
        client = EmbeddingClient(provider, breaker=breaker, sleep=sleep)
        provider.embed_texts.side_effect = AuthError("denied", status_code=401)

        with pytest.raises(AuthError):
            client.embed(["a"])

        assert breaker.state.state == BreakerState.CLOSED


class TestValidation:
    """Test response validation."""

    def test_count_mismatch_is_malformed(self, client, provider):
        provider.embed_texts.side_effect = lambda texts, timeout=None: vectors_for(texts)[:-1]

        with pytest.raises(MalformedResponseError):
            client.embed(["a", "b"])

    def test_strict_dimension_mismatch(self, client, provider):
        provider.embed_texts.side_effect = lambda texts, timeout=None: vectors_for(texts, dimension=3)

        with pytest.raises(DimensionMismatchError) as exc_info:
            client.embed(["a"])

        assert exc_info.value.expected == DIM
        assert exc_info.value.actual == 3

    def test_lenient_dimension_returns_raw(self, client, provider):
        provider.embed_texts.side_effect = lambda texts, timeout=None: vectors_for(texts, dimension=3)

        vectors = client.embed(["a"], strict=False)

        assert vectors[0].shape == (3,)


class TestCancellation:
    """Test cancellation tokens on embedding calls."""

    def test_cancelled_token_prevents_call(self, client, provider):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            client.embed(["a"], cancel_token=token)

        provider.embed_texts.assert_not_called()

    def test_deadline_passed_to_provider(self, client, provider):
        token = CancellationToken(timeout=5, clock=lambda: 100.0)

        client.embed(["a"], cancel_token=token)

        assert provider.embed_texts.call_args.kwargs["timeout"] == pytest.approx(5)

    def test_cancel_during_backoff(self, client, provider, sleep):
        token = CancellationToken()

        def fail_and_cancel(texts, timeout=None):
            token.cancel()
            raise TransientProviderError("503", status_code=503)

        provider.embed_texts.side_effect = fail_and_cancel

        with pytest.raises(OperationCancelledError):
            client.embed(["a"], cancel_token=token)

        assert provider.embed_texts.call_count == 1
        sleep.assert_not_called()


def test_metrics_snapshot(client, provider):
    client.embed(["a", "b"])
    provider.embed_texts.side_effect = ProviderRequestError("bad", status_code=422)
    with pytest.raises(ProviderRequestError):
        client.embed(["c"])

    snapshot = client.metrics.snapshot()
    assert snapshot["calls"] == 2
    assert snapshot["successes"] == 1
    assert snapshot["texts_embedded"] == 2
    assert snapshot["failures"] == {"ProviderRequestError": 1}
