"""
Circuit Breaker — fast-fail gate per external provider.

Counts consecutive failures against one provider. Once the count reaches
the threshold the breaker is OPEN and callers should skip the network call.
When the reset timeout has elapsed since the last failure, the next
``is_open()`` check resets the breaker to CLOSED and lets that call through:
the auto-reset is the half-open probe, and the probe's outcome decides
whether the breaker opens again.

The breaker never raises. Callers check ``is_open()`` first and report the
outcome with ``record_success()`` / ``record_failure()`` afterwards.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Callable
import threading
import time


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Failing: reject calls


class CircuitBreaker:
    """Consecutive-failure breaker with timed auto-reset."""

    def __init__(
        self,
        name: str = "",
        failure_threshold: int = 3,
        reset_timeout_ms: int = 60_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock
        self._lock = threading.Lock()

        self._failure_count = 0
        self._last_failure: float | None = None

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure(self) -> float | None:
        return self._last_failure

    def _elapsed_ms(self) -> float:
        if self._last_failure is None:
            return float("inf")
        return (self._clock() - self._last_failure) * 1000

    def is_open(self) -> bool:
        """True while failures >= threshold and the reset timeout has not elapsed."""
        with self._lock:
            if self._failure_count < self.failure_threshold:
                return False
            if self._elapsed_ms() >= self.reset_timeout_ms:
                # Half-open probe: let the next call through.
                self._failure_count = 0
                self._last_failure = None
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._last_failure = None

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure = self._clock()

    @property
    def state(self) -> CircuitState:
        """Current state without triggering the auto-reset."""
        with self._lock:
            if (
                self._failure_count >= self.failure_threshold
                and self._elapsed_ms() < self.reset_timeout_ms
            ):
                return CircuitState.OPEN
            return CircuitState.CLOSED

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
        }
