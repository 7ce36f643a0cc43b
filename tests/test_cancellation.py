"""
Tests for cancellation tokens.
"""

import pytest

from catalog_recommender.core.cancellation import CancellationToken
from catalog_recommender.core.errors import OperationCancelledError


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_fresh_token_not_cancelled():
    token = CancellationToken()

    assert not token.cancelled
    assert token.remaining() is None
    token.raise_if_cancelled()


def test_cancel():
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError, match="vector query cancelled"):
        token.raise_if_cancelled("vector query")


def test_deadline():
    clock = FakeClock()
    token = CancellationToken(timeout=5, clock=clock)

    assert token.remaining() == 5
    clock.now = 5
    assert token.cancelled
    assert token.remaining() == 0


def test_wait_returns_early_when_cancelled():
    token = CancellationToken()
    token.cancel()

    assert token.wait(30) is True


def test_wait_bounded_by_deadline():
    clock = FakeClock()
    token = CancellationToken(timeout=0, clock=clock)

    assert token.wait(30) is True
