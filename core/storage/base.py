"""Storage collaborator contracts.

The integration layer treats persistence as a transactional key-value
store: credentials keyed by (user_id, provider), webhook events by
(provider, event_id), bookings by external id. Implementations live in
``core.storage.memory`` (default, tests) and ``core.storage.sql``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from core.integrations.entities import (
    Booking,
    EventStatus,
    InboundEvent,
    IntegrationCredential,
    WebhookEvent,
)


class CredentialStore(ABC):
    """IntegrationCredential rows, one per (user, provider)."""

    @abstractmethod
    async def get(self, user_id: str, provider: str) -> IntegrationCredential | None: ...

    @abstractmethod
    async def upsert(self, credential: IntegrationCredential) -> IntegrationCredential:
        """Insert or replace the credential for (user_id, provider)."""

    @abstractmethod
    async def find_by_provider_user(
        self, provider: str, provider_user_id: str
    ) -> IntegrationCredential | None:
        """Credential whose provider-side account id is ``provider_user_id``."""

    @abstractmethod
    async def list_expiring(self, provider: str, before: datetime) -> list[IntegrationCredential]:
        """Refreshable credentials (CONNECTED or ERROR) expiring before ``before``."""


class WebhookEventStore(ABC):
    """Append-only log of inbound webhook events."""

    @abstractmethod
    async def get(self, provider: str, event_id: str) -> WebhookEvent | None: ...

    @abstractmethod
    async def claim(
        self, event: InboundEvent, lease: timedelta, now: datetime
    ) -> tuple[WebhookEvent, bool]:
        """Atomically take ownership of an event for processing.

        Returns ``(record, claimed)``. A new event, a FAILED event, or a
        PENDING event whose lease has expired is (re)claimed as PENDING
        with ``attempts`` incremented. A PROCESSED event, or a PENDING one
        still inside its lease, is returned unclaimed.
        """

    @abstractmethod
    async def mark(
        self,
        provider: str,
        event_id: str,
        status: EventStatus,
        error: str | None = None,
    ) -> WebhookEvent | None: ...


class BookingStore(ABC):
    """Booking state updated by webhook handlers."""

    @abstractmethod
    async def get(self, external_id: str) -> Booking | None: ...

    @abstractmethod
    async def save(self, booking: Booking) -> Booking:
        """Insert or replace a booking by external id."""

    @abstractmethod
    async def update(self, external_id: str, **changes: Any) -> Booking | None:
        """Apply field changes. Returns None when the booking is unknown."""

    @abstractmethod
    async def find_by_meeting_id(self, meeting_id: str) -> Booking | None: ...
