"""
Retry Manager — exponential backoff with jitter.

Decides whether a failed provider call is worth repeating and how long to
wait first. Jitter spreads retries from many callers so a recovering
provider is not hit by a synchronized burst. Token and auth errors are
never retried: a bad credential stays bad.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
import asyncio
import logging
import math
import random

from core.errors import ProviderUnavailableError, classify_error
from core.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.2


@dataclass
class RetryAttempt:
    """One failed attempt inside a single outbound call. Never persisted."""
    attempt: int
    error: BaseException
    delay_ms: int


class RetryManager:
    """Backoff policy plus a small async driver (``run``)."""

    def __init__(
        self,
        name: str = "",
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10_000,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self._sleep = sleep

    def should_retry(self, error: BaseException | None, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is None:
            return True
        return classify_error(error)

    def get_backoff_time(self, attempt: int) -> int:
        """Delay in ms: min(max, base * 2^attempt), jittered by up to ±20%."""
        delay = min(self.max_delay_ms, self.base_delay_ms * (2 ** attempt))
        jitter = delay * JITTER_RATIO * (self._rng.random() * 2 - 1)
        return math.floor(delay + jitter)

    def handle_max_retries(self, error: BaseException) -> None:
        logger.error(
            "Retries exhausted for %s after %d attempts: %s",
            self.name or "provider call",
            self.max_retries,
            error,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        breaker: CircuitBreaker | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or retrying stops making sense.

        The breaker is consulted before every attempt. Only retryable
        failures are charged to it, once per call, after the last attempt.
        """
        attempt = 0
        while True:
            if breaker is not None and breaker.is_open():
                logger.warning("Circuit open for %s, skipping call", breaker.name or self.name)
                raise ProviderUnavailableError(
                    f"Circuit breaker OPEN for {breaker.name or self.name}",
                    provider=breaker.name or self.name,
                )
            try:
                result = await operation()
            except ProviderUnavailableError:
                raise
            except Exception as exc:
                attempt += 1
                retryable = classify_error(exc)
                if not self.should_retry(exc, attempt):
                    if retryable:
                        self.handle_max_retries(exc)
                        if breaker is not None:
                            breaker.record_failure()
                    raise
                record = RetryAttempt(attempt=attempt, error=exc, delay_ms=self.get_backoff_time(attempt))
                logger.warning(
                    "Attempt %d for %s failed (%s), retrying in %dms",
                    record.attempt, self.name or "provider call", exc, record.delay_ms,
                )
                await self._sleep(record.delay_ms / 1000)
                continue

            if breaker is not None:
                breaker.record_success()
            return result
