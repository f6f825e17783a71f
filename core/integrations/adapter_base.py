"""
Universal Adapter Framework.

Every outbound provider call (Cal.com, Calendly, Zoom, token endpoints)
goes through the same pipeline:

    Circuit Breaker gate → Retry w/ Backoff → httpx call with timeout
    → response classification

Failures leave this module as a tagged ``ProviderHTTPError`` carrying an
explicit ``retryable`` flag: network errors, timeouts, 408, 429 and 5xx
are retryable; any other 4xx is not.
"""
from __future__ import annotations
from abc import ABC
from dataclasses import dataclass, field
from typing import Any
import logging
import time

import httpx

from core.config import ProviderSettings
from core.errors import ProviderHTTPError, is_terminal_auth_error
from core.observability.otel_setup import provider_span
from core.resilience.circuit_breaker import CircuitBreaker
from core.resilience.retry import RetryManager

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429}
DEFAULT_TIMEOUT = 15.0


# ---------------------------------------------------------------------------
# Request / Response envelope
# ---------------------------------------------------------------------------

@dataclass
class AdapterRequest:
    """Standardized outbound request."""
    method: str  # GET, POST, PUT, PATCH, DELETE
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class AdapterResponse:
    """Standardized inbound response."""
    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    latency_ms: float = 0.0
    adapter_name: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _decode(resp: httpx.Response) -> Any:
    if resp.headers.get("content-type", "").startswith("application/json"):
        return resp.json()
    return resp.text


def classify_response(provider: str, resp: httpx.Response) -> ProviderHTTPError | None:
    """Return None for success, or the tagged error describing the failure."""
    if resp.status_code < 400:
        return None
    body = resp.text[:500]
    retryable = resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUS
    if is_terminal_auth_error(body):
        retryable = False
    return ProviderHTTPError(
        f"{provider} responded HTTP {resp.status_code}",
        provider=provider,
        http_status=resp.status_code,
        body=body,
        retryable=retryable,
    )


# ---------------------------------------------------------------------------
# Resilient HTTP boundary
# ---------------------------------------------------------------------------

class ResilientHTTP:
    """httpx calls for one provider, gated by its breaker and retry manager."""

    def __init__(
        self,
        provider: str,
        breaker: CircuitBreaker,
        retry: RetryManager,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.provider = provider
        self.breaker = breaker
        self.retry = retry
        self.timeout = timeout
        self._client = client

    async def _once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderHTTPError(
                f"{self.provider} timed out after {kwargs['timeout']}s",
                provider=self.provider,
                retryable=True,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderHTTPError(
                f"{self.provider} network error: {exc.__class__.__name__}",
                provider=self.provider,
                retryable=True,
            ) from exc

        error = classify_response(self.provider, resp)
        if error is not None:
            raise error
        return resp

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Execute one logical call. Raises ``ProviderUnavailableError`` without
        touching the network when the breaker is open, ``ProviderHTTPError``
        once retrying stops.
        """
        if kwargs.get("timeout") is None:
            kwargs.pop("timeout", None)
        with provider_span("provider.http", self.provider, method=method):
            return await self.retry.run(
                lambda: self._once(method, url, **kwargs),
                breaker=self.breaker,
            )


# ---------------------------------------------------------------------------
# AdapterBase
# ---------------------------------------------------------------------------

class AdapterBase(ABC):
    """
    Base class for provider REST adapters.

    Subclasses set ``name`` and add provider operations on top of
    ``request``. Credentials are supplied per call by the OAuth manager;
    adapters never cache tokens.
    """

    name: str = ""

    def __init__(self, settings: ProviderSettings, http: ResilientHTTP):
        self.settings = settings
        self.http = http

    @property
    def base_url(self) -> str:
        return self.settings.api_base_url

    def auth_headers(self, access_token: str | None) -> dict[str, str]:
        if not access_token:
            return {}
        return {"Authorization": f"Bearer {access_token}"}

    async def request(self, req: AdapterRequest, access_token: str | None = None) -> AdapterResponse:
        url = f"{self.base_url.rstrip('/')}/{req.path.lstrip('/')}"
        headers = {**self.auth_headers(access_token), **req.headers}

        start = time.time()
        resp = await self.http.send(
            req.method,
            url,
            params=req.params or None,
            json=req.body,
            headers=headers,
            timeout=req.timeout,
        )
        latency = (time.time() - start) * 1000
        logger.debug("%s %s %s -> %d (%.1fms)", self.name, req.method, req.path, resp.status_code, latency)
        return AdapterResponse(
            status_code=resp.status_code,
            data=_decode(resp) if resp.content else None,
            headers=dict(resp.headers),
            latency_ms=latency,
            adapter_name=self.name,
        )
