"""
Per-provider resilience registry.

One CircuitBreaker and one RetryManager per provider name, created once at
startup and injected into adapters and the OAuth manager. Tests build
their own registry, so no state leaks between them.
"""
from __future__ import annotations
from typing import Any, Awaitable, Callable, Iterable
import asyncio
import random
import time

from core.config import ResilienceSettings
from core.resilience.circuit_breaker import CircuitBreaker
from core.resilience.retry import RetryManager


class ResilienceRegistry:
    """Process-wide map of provider name -> (breaker, retry manager)."""

    def __init__(
        self,
        settings: ResilienceSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.settings = settings or ResilienceSettings()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._breakers: dict[str, CircuitBreaker] = {}
        self._retries: dict[str, RetryManager] = {}

    @classmethod
    def for_providers(cls, names: Iterable[str], settings: ResilienceSettings | None = None, **kwargs: Any) -> "ResilienceRegistry":
        registry = cls(settings, **kwargs)
        for name in names:
            registry.breaker(name)
            registry.retry(name)
        return registry

    def breaker(self, provider: str) -> CircuitBreaker:
        if provider not in self._breakers:
            self._breakers[provider] = CircuitBreaker(
                name=provider,
                failure_threshold=self.settings.failure_threshold,
                reset_timeout_ms=self.settings.reset_timeout_ms,
                clock=self._clock,
            )
        return self._breakers[provider]

    def retry(self, provider: str) -> RetryManager:
        if provider not in self._retries:
            self._retries[provider] = RetryManager(
                name=provider,
                max_retries=self.settings.max_retries,
                base_delay_ms=self.settings.base_delay_ms,
                max_delay_ms=self.settings.max_delay_ms,
                rng=self._rng,
                sleep=self._sleep,
            )
        return self._retries[provider]

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.snapshot() for name, breaker in self._breakers.items()}
