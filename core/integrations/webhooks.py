"""
Inbound Webhook Verification and Dispatch.

Every provider webhook goes through:
- HMAC-SHA256 signature check over the raw request bytes
- Provider-specific parsing into an ``InboundEvent`` (see ``providers``)
- Idempotent dispatch keyed by (provider, event id)

Processing is synchronous: the endpoint answers 2xx only after the
handler succeeded, and a deliberate non-2xx on failure so the provider
redelivers.

    PENDING (claimed) → PROCESSED (handler succeeded)
                      → FAILED    (handler raised; redelivery reclaims it)
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping
import hashlib
import hmac
import logging
import time

from core.errors import HandlerError, SignatureError
from core.integrations.entities import EventStatus, InboundEvent, utcnow
from core.observability.otel_setup import provider_span
from core.storage.base import WebhookEventStore

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300
DEFAULT_PROCESSING_LEASE = timedelta(seconds=30)
HEX_DIGITS = frozenset("0123456789abcdef")


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _is_hex_digest(value: str) -> bool:
    return len(value) == 64 and all(c in HEX_DIGITS for c in value)


def _is_unix_timestamp(value: str) -> bool:
    # str.isdigit() alone accepts non-ASCII digits such as "²"
    return value.isascii() and value.isdigit()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """
    Constant-time check of a bare hex signature.

    Raises ``SignatureError`` when the signature is missing or is not a
    SHA-256 hex digest; returns False when it simply does not match.
    """
    if not signature:
        raise SignatureError("Missing webhook signature")
    signature = signature.strip().lower()
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    if not _is_hex_digest(signature):
        raise SignatureError("Malformed webhook signature")
    return hmac.compare_digest(compute_signature(body, secret), signature)


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


class SignatureVerifier(ABC):
    """Checks one provider's signature scheme against raw request bytes."""

    header: str = ""

    def __init__(
        self,
        secret: str,
        header: str | None = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Webhook signing secret must be configured")
        self.secret = secret
        self.header = (header or self.header).lower()
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    @abstractmethod
    def sign(self, body: bytes, timestamp: int | None = None) -> dict[str, str]:
        """Headers a provider would send with ``body``."""

    @abstractmethod
    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """True on match. Raises ``SignatureError`` on missing/malformed headers."""

    def _fresh(self, timestamp: int) -> bool:
        if abs(self._clock() - timestamp) > self.tolerance_seconds:
            logger.warning("Rejected webhook with stale timestamp %s", timestamp)
            return False
        return True


class HexSignatureVerifier(SignatureVerifier):
    """Bare hex HMAC of the body in a single header (Cal.com)."""

    header = "x-cal-signature-256"

    def sign(self, body: bytes, timestamp: int | None = None) -> dict[str, str]:
        return {self.header: compute_signature(body, self.secret)}

    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        return verify_signature(body, _lower_headers(headers).get(self.header), self.secret)


class TimestampedSignatureVerifier(SignatureVerifier):
    """
    ``t=<unix>,v1=<hex>`` header signing ``"{t}.{body}"`` (Stripe, Calendly).

    Several ``v1`` entries may be present during secret rotation; any match
    is accepted.
    """

    header = "stripe-signature"

    def _signed_payload(self, timestamp: int | str, body: bytes) -> str:
        return compute_signature(f"{timestamp}.".encode("utf-8") + body, self.secret)

    def sign(self, body: bytes, timestamp: int | None = None) -> dict[str, str]:
        ts = int(self._clock()) if timestamp is None else timestamp
        return {self.header: f"t={ts},v1={self._signed_payload(ts, body)}"}

    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        value = _lower_headers(headers).get(self.header)
        if not value:
            raise SignatureError(f"Missing {self.header} header")

        timestamp: str | None = None
        candidates: list[str] = []
        for item in value.split(","):
            key, sep, part = item.strip().partition("=")
            if not sep:
                raise SignatureError(f"Malformed {self.header} header")
            if key == "t":
                timestamp = part
            elif key == "v1":
                candidates.append(part.lower())
        if timestamp is None or not _is_unix_timestamp(timestamp) or not candidates:
            raise SignatureError(f"Malformed {self.header} header")
        if not all(_is_hex_digest(c) for c in candidates):
            raise SignatureError(f"Malformed {self.header} signature")

        if not self._fresh(int(timestamp)):
            return False
        expected = self._signed_payload(timestamp, body)
        return any(hmac.compare_digest(expected, c) for c in candidates)


class ZoomSignatureVerifier(SignatureVerifier):
    """``x-zm-signature: v0=<hex>`` over ``"v0:{ts}:{body}"``."""

    header = "x-zm-signature"
    timestamp_header = "x-zm-request-timestamp"

    def _digest(self, timestamp: int | str, body: bytes) -> str:
        return compute_signature(f"v0:{timestamp}:".encode("utf-8") + body, self.secret)

    def sign(self, body: bytes, timestamp: int | None = None) -> dict[str, str]:
        ts = int(self._clock()) if timestamp is None else timestamp
        return {
            self.header: f"v0={self._digest(ts, body)}",
            self.timestamp_header: str(ts),
        }

    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        lowered = _lower_headers(headers)
        value = lowered.get(self.header)
        timestamp = lowered.get(self.timestamp_header)
        if not value or not timestamp:
            raise SignatureError("Missing Zoom signature headers")
        signature = value[3:].lower()
        if not value.startswith("v0=") or not _is_unix_timestamp(timestamp):
            raise SignatureError("Malformed Zoom signature headers")
        if not _is_hex_digest(signature):
            raise SignatureError("Malformed Zoom signature")
        if not self._fresh(int(timestamp)):
            return False
        return hmac.compare_digest(self._digest(timestamp, body), signature)

    def url_validation_response(self, plain_token: str) -> dict[str, str]:
        """Answer Zoom's ``endpoint.url_validation`` challenge."""
        return {
            "plainToken": plain_token,
            "encryptedToken": compute_signature(plain_token.encode("utf-8"), self.secret),
        }


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

Handler = Callable[[InboundEvent], Awaitable[Any]]


@dataclass
class ProcessingResult:
    """Outcome of one dispatch, rendered as the webhook response body."""
    success: bool
    status: str  # processed | duplicate | ignored | in_progress
    http_status: int = 200
    event_id: str = ""
    event_type: str = ""
    detail: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": self.success,
            "status": self.status,
            "event_id": self.event_id,
            "event_type": self.event_type,
        }
        if self.detail is not None:
            data["result"] = self.detail
        return data


class WebhookDispatcher:
    """Routes verified events of one provider to handlers, at most once per event id."""

    def __init__(
        self,
        provider: str,
        store: WebhookEventStore,
        lease: timedelta = DEFAULT_PROCESSING_LEASE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.lease = lease
        self._clock = clock
        self._handlers: dict[str, Handler] = {}

    def register(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type] = handler

    def on(self, event_type: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""
        def decorator(handler: Handler) -> Handler:
            self.register(event_type, handler)
            return handler
        return decorator

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def _result(self, event: InboundEvent, **kwargs: Any) -> ProcessingResult:
        return ProcessingResult(event_id=event.event_id, event_type=event.event_type, **kwargs)

    async def dispatch(self, event: InboundEvent) -> ProcessingResult:
        with provider_span("webhook.dispatch", self.provider, event_type=event.event_type):
            record, claimed = await self.store.claim(event, self.lease, self._clock())
            if not claimed:
                if record.status == EventStatus.PROCESSED:
                    logger.info("Duplicate %s event %s skipped", self.provider, event.event_id)
                    return self._result(event, success=True, status="duplicate")
                logger.info("%s event %s is still being processed", self.provider, event.event_id)
                return self._result(event, success=False, status="in_progress", http_status=409)

            handler = self._handlers.get(event.event_type)
            if handler is None:
                await self.store.mark(self.provider, event.event_id, EventStatus.PROCESSED)
                logger.info("No handler for %s event type %s", self.provider, event.event_type)
                return self._result(event, success=True, status="ignored")

            try:
                detail = await handler(event)
            except Exception as exc:
                await self.store.mark(
                    self.provider, event.event_id, EventStatus.FAILED, error=str(exc)[:500]
                )
                logger.exception(
                    "Handler for %s %s failed (event %s, attempt %d)",
                    self.provider, event.event_type, event.event_id, record.attempts,
                )
                raise HandlerError(
                    f"Handler for {event.event_type} failed",
                    provider=self.provider,
                    event_id=event.event_id,
                    event_type=event.event_type,
                ) from exc

            await self.store.mark(self.provider, event.event_id, EventStatus.PROCESSED)
            logger.info("Processed %s %s (event %s)", self.provider, event.event_type, event.event_id)
            return self._result(event, success=True, status="processed", detail=detail)
