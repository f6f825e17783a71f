"""SQLAlchemy records backing the storage collaborators.

Each record converts to and from its integration entity with
``to_entity()`` / ``apply()``, so repositories never leak ORM objects.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.integrations.entities import (
    Booking,
    BookingStatus,
    ConnectionStatus,
    EventStatus,
    IntegrationCredential,
    WebhookEvent,
)
from core.models.base import Base, RecordMixin


class IntegrationCredentialRecord(RecordMixin, Base):
    """A user's OAuth connection to one provider."""

    __tablename__ = "integration_credentials"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_credential_user_provider"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    scopes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ConnectionStatus.CONNECTED.value)
    provider_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failed_refresh_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def apply(self, credential: IntegrationCredential) -> None:
        self.user_id = credential.user_id
        self.provider = credential.provider
        self.access_token = credential.access_token
        self.refresh_token = credential.refresh_token
        self.expires_at = credential.expires_at
        self.scopes = list(credential.scopes)
        self.status = credential.status.value
        self.provider_user_id = credential.provider_user_id
        self.failed_refresh_count = credential.failed_refresh_count

    def to_entity(self) -> IntegrationCredential:
        return IntegrationCredential(
            user_id=self.user_id,
            provider=self.provider,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
            scopes=list(self.scopes or []),
            status=ConnectionStatus(self.status),
            provider_user_id=self.provider_user_id,
            failed_refresh_count=self.failed_refresh_count,
            updated_at=self.updated_at,
        )


class WebhookEventRecord(RecordMixin, Base):
    """One inbound webhook notification; (provider, event_id) is the idempotency key."""

    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("provider", "event_id", name="uq_webhook_provider_event"),)

    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EventStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_entity(self) -> WebhookEvent:
        return WebhookEvent(
            provider=self.provider,
            event_id=self.event_id,
            event_type=self.event_type,
            payload=dict(self.payload or {}),
            received_at=self.received_at,
            status=EventStatus(self.status),
            attempts=self.attempts,
            error=self.error,
            processed_at=self.processed_at,
            claimed_at=self.claimed_at,
        )


class BookingRecord(RecordMixin, Base):
    """A coaching session booking mirrored from a scheduling provider."""

    __tablename__ = "bookings"

    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BookingStatus.PENDING.value)
    payment_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    start_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attendee_email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    attendee_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    def apply(self, booking: Booking) -> None:
        self.external_id = booking.external_id
        self.provider = booking.provider
        self.user_id = booking.user_id
        self.status = booking.status.value
        self.payment_status = booking.payment_status
        self.title = booking.title
        self.start_time = booking.start_time
        self.end_time = booking.end_time
        self.attendee_email = booking.attendee_email
        self.attendee_name = booking.attendee_name
        self.cancellation_reason = booking.cancellation_reason
        self.meeting_id = booking.meeting_id

    def to_entity(self) -> Booking:
        return Booking(
            external_id=self.external_id,
            provider=self.provider,
            user_id=self.user_id,
            status=BookingStatus(self.status),
            payment_status=self.payment_status,
            title=self.title,
            start_time=self.start_time,
            end_time=self.end_time,
            attendee_email=self.attendee_email,
            attendee_name=self.attendee_name,
            cancellation_reason=self.cancellation_reason,
            meeting_id=self.meeting_id,
            updated_at=self.updated_at,
        )
