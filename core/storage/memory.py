"""In-memory storage collaborators. Replace with ``core.storage.sql`` for production.

Entities go in and come out as deep copies, so callers never share
lists or payload dicts with a stored row.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from core.integrations.entities import (
    Booking,
    ConnectionStatus,
    EventStatus,
    InboundEvent,
    IntegrationCredential,
    WebhookEvent,
    utcnow,
)
from core.storage.base import BookingStore, CredentialStore, WebhookEventStore


class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self._rows: dict[tuple[str, str], IntegrationCredential] = {}

    async def get(self, user_id: str, provider: str) -> IntegrationCredential | None:
        row = self._rows.get((user_id, provider))
        return deepcopy(row) if row else None

    async def upsert(self, credential: IntegrationCredential) -> IntegrationCredential:
        stored = replace(deepcopy(credential), updated_at=utcnow())
        self._rows[stored.key] = stored
        return deepcopy(stored)

    async def find_by_provider_user(
        self, provider: str, provider_user_id: str
    ) -> IntegrationCredential | None:
        for credential in self._rows.values():
            if credential.provider == provider and credential.provider_user_id == provider_user_id:
                return deepcopy(credential)
        return None

    async def list_expiring(self, provider: str, before: datetime) -> list[IntegrationCredential]:
        rows = [
            deepcopy(c) for c in self._rows.values()
            if c.provider == provider
            and c.status in (ConnectionStatus.CONNECTED, ConnectionStatus.ERROR)
            and c.expires_at is not None
            and c.expires_at < before
        ]
        rows.sort(key=lambda c: c.expires_at)
        return rows


class InMemoryWebhookEventStore(WebhookEventStore):
    def __init__(self):
        self._events: dict[tuple[str, str], WebhookEvent] = {}

    async def get(self, provider: str, event_id: str) -> WebhookEvent | None:
        event = self._events.get((provider, event_id))
        return deepcopy(event) if event else None

    async def claim(
        self, event: InboundEvent, lease: timedelta, now: datetime
    ) -> tuple[WebhookEvent, bool]:
        key = (event.provider, event.event_id)
        existing = self._events.get(key)

        if existing is not None:
            if existing.status == EventStatus.PROCESSED:
                return deepcopy(existing), False
            lease_start = existing.claimed_at or existing.received_at
            if existing.status == EventStatus.PENDING and now - lease_start < lease:
                return deepcopy(existing), False
            existing.status = EventStatus.PENDING
            existing.attempts += 1
            existing.claimed_at = now
            existing.error = None
            return deepcopy(existing), True

        record = WebhookEvent(
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
            payload=deepcopy(event.payload),
            received_at=now,
            claimed_at=now,
            status=EventStatus.PENDING,
            attempts=1,
        )
        self._events[key] = record
        return deepcopy(record), True

    async def mark(
        self,
        provider: str,
        event_id: str,
        status: EventStatus,
        error: str | None = None,
    ) -> WebhookEvent | None:
        event = self._events.get((provider, event_id))
        if event is None:
            return None
        event.status = status
        event.error = error
        if status == EventStatus.PROCESSED:
            event.processed_at = utcnow()
        return deepcopy(event)

    def all(self) -> list[WebhookEvent]:
        return [deepcopy(e) for e in self._events.values()]


class InMemoryBookingStore(BookingStore):
    def __init__(self):
        self._bookings: dict[str, Booking] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []  # (external_id, changes)

    async def get(self, external_id: str) -> Booking | None:
        booking = self._bookings.get(external_id)
        return deepcopy(booking) if booking else None

    async def save(self, booking: Booking) -> Booking:
        stored = replace(deepcopy(booking), updated_at=utcnow())
        self._bookings[stored.external_id] = stored
        self.writes.append((stored.external_id, stored.to_dict()))
        return deepcopy(stored)

    async def update(self, external_id: str, **changes: Any) -> Booking | None:
        booking = self._bookings.get(external_id)
        if booking is None:
            return None
        for name, value in changes.items():
            if hasattr(booking, name) and name not in ("external_id", "provider"):
                setattr(booking, name, deepcopy(value))
        booking.updated_at = utcnow()
        self.writes.append((external_id, dict(changes)))
        return deepcopy(booking)

    async def find_by_meeting_id(self, meeting_id: str) -> Booking | None:
        for booking in self._bookings.values():
            if booking.meeting_id == meeting_id:
                return deepcopy(booking)
        return None
