"""
Integration entities shared by the OAuth manager, webhook pipeline and
storage collaborators.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class IntegrationCredential:
    """One user's connection to one provider. Unique on (user_id, provider)."""
    user_id: str
    provider: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = field(default_factory=list)
    status: ConnectionStatus = ConnectionStatus.CONNECTED
    provider_user_id: str | None = None
    failed_refresh_count: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.provider)

    @property
    def is_connected(self) -> bool:
        return self.status != ConnectionStatus.DISCONNECTED

    def copy(self, **changes: Any) -> "IntegrationCredential":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Public view. Tokens are never included."""
        return {
            "user_id": self.user_id,
            "provider": self.provider,
            "status": self.status.value,
            "scopes": self.scopes,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "failed_refresh_count": self.failed_refresh_count,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class OAuthTokens:
    """Token payload returned by a provider's token endpoint."""
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scopes: list[str] = field(default_factory=list)
    provider_user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "token_type": self.token_type,
            "scopes": self.scopes,
        }


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------

class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass
class InboundEvent:
    """A verified, parsed webhook notification before processing."""
    provider: str
    event_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=utcnow)


@dataclass
class WebhookEvent:
    """Persisted record of an inbound event. The event id is the idempotency key."""
    provider: str
    event_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=utcnow)
    status: EventStatus = EventStatus.PENDING
    attempts: int = 0
    error: str | None = None
    processed_at: datetime | None = None
    claimed_at: datetime | None = None  # start of the current processing lease

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.event_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "received_at": self.received_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
        }


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class Booking:
    """Coaching session booking as mirrored from a scheduling provider."""
    external_id: str
    provider: str
    user_id: str | None = None
    status: BookingStatus = BookingStatus.PENDING
    payment_status: str | None = None
    title: str = ""
    start_time: str | None = None
    end_time: str | None = None
    attendee_email: str = ""
    attendee_name: str = ""
    cancellation_reason: str | None = None
    meeting_id: str | None = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "provider": self.provider,
            "user_id": self.user_id,
            "status": self.status.value,
            "payment_status": self.payment_status,
            "title": self.title,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "attendee_email": self.attendee_email,
            "attendee_name": self.attendee_name,
            "cancellation_reason": self.cancellation_reason,
            "meeting_id": self.meeting_id,
        }
