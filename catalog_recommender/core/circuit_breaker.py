"""
Circuit breaker guarding calls to an external dependency.

closed --(threshold consecutive failures)--> open
open --(cooldown elapsed, next call)--> half_open (one trial call)
half_open --success--> closed, half_open --failure--> open
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..util.logging import logger
from .errors import AuthError, CircuitOpenError, OperationCancelledError, ProviderRequestError


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerState:
    state: BreakerState
    consecutive_failures: int
    opened_at: Optional[float]


def counts_as_failure(error: Exception) -> bool:
    """Whether an error signals a degraded dependency.

    Credential problems, rejected requests and caller cancellations say
    nothing about the dependency's health.
    """
    return not isinstance(error, (AuthError, ProviderRequestError, OperationCancelledError))


class CircuitBreaker:
    """Thread-safe circuit breaker for one dependency."""

    def __init__(self, name: str = "embedding_provider", failure_threshold: int = 5,
                 cooldown_sec: float = 60.0, clock: Callable[[], float] = time.monotonic,
                 is_failure: Callable[[Exception], bool] = counts_as_failure):
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1: {failure_threshold}")

        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_sec = cooldown_sec
        self._clock = clock
        self._is_failure = is_failure

        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(self._state, self._consecutive_failures, self._opened_at)

    def allows_calls(self) -> bool:
        """Non-mutating check used by callers deciding whether to attempt work."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return True
            if self._state == BreakerState.OPEN:
                return self._clock() - self._opened_at > self.cooldown_sec
            return not self._trial_in_flight

    def call(self, func: Callable, *args, **kwargs):
        """Invoke `func` through the breaker.

        Raises CircuitOpenError without calling `func` while open, or while a
        half-open trial is already in flight.
        """
        trial = self._acquire()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self._is_failure(e):
                self._record_failure(trial)
            else:
                self._release(trial)
            raise
        except BaseException:
            self._release(trial)
            raise

        self._record_success(trial)
        return result

    def _acquire(self) -> bool:
        """Admit a call. Returns True when the call is the half-open trial."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return False

            if self._state == BreakerState.OPEN:
                elapsed = self._clock() - self._opened_at
                if elapsed <= self.cooldown_sec:
                    raise CircuitOpenError(self.name, retry_in=self.cooldown_sec - elapsed)
                self._transition(BreakerState.HALF_OPEN)
                self._trial_in_flight = True
                return True

            # Half-open: a single trial at a time
            if self._trial_in_flight:
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True
            return True

    def _record_success(self, trial: bool) -> None:
        with self._lock:
            if not trial:
                # Admitted while closed; once open, only the trial may close it
                if self._state == BreakerState.CLOSED:
                    self._consecutive_failures = 0
                return

            self._trial_in_flight = False
            self._consecutive_failures = 0
            self._opened_at = None
            if self._state != BreakerState.CLOSED:
                self._transition(BreakerState.CLOSED)

    def _record_failure(self, trial: bool) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if trial:
                self._trial_in_flight = False
                self._opened_at = self._clock()
                self._transition(BreakerState.OPEN)
            elif self._state == BreakerState.CLOSED and self._consecutive_failures >= self.failure_threshold:
                self._opened_at = self._clock()
                self._transition(BreakerState.OPEN)

    def _release(self, trial: bool) -> None:
        if trial:
            with self._lock:
                self._trial_in_flight = False

    def _transition(self, new_state: BreakerState) -> None:
        # Caller holds self._lock
        old_state = self._state
        self._state = new_state
        logger.log_breaker_transition(self.name, old_state.value, new_state.value, self._consecutive_failures)

    def reset(self) -> None:
        """Force the breaker closed (operator action)."""
        with self._lock:
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
            if self._state != BreakerState.CLOSED:
                self._transition(BreakerState.CLOSED)

    def status(self):
        """Return breaker status for monitoring."""
        with self._lock:
            retry_in = None
            if self._state == BreakerState.OPEN:
                retry_in = max(0.0, self.cooldown_sec - (self._clock() - self._opened_at))
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self.failure_threshold,
                "cooldown_sec": self.cooldown_sec,
                "retry_in_sec": retry_in,
            }
