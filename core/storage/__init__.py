"""
Core Storage — persistence collaborators for the integration layer.

- CredentialStore: IntegrationCredential rows keyed by (user, provider)
- WebhookEventStore: Idempotency log keyed by (provider, event id)
- BookingStore: Booking state updated by webhook handlers
"""
from dataclasses import dataclass

from core.storage.base import BookingStore, CredentialStore, WebhookEventStore
from core.storage.memory import (
    InMemoryBookingStore,
    InMemoryCredentialStore,
    InMemoryWebhookEventStore,
)


@dataclass
class Stores:
    credentials: CredentialStore
    events: WebhookEventStore
    bookings: BookingStore


def build_stores(backend: str = "memory") -> Stores:
    """Create the store set for ``backend`` (``memory`` or ``sql``)."""
    if backend == "memory":
        return Stores(
            credentials=InMemoryCredentialStore(),
            events=InMemoryWebhookEventStore(),
            bookings=InMemoryBookingStore(),
        )
    if backend == "sql":
        from core.storage.sql import SqlBookingStore, SqlCredentialStore, SqlWebhookEventStore

        return Stores(
            credentials=SqlCredentialStore(),
            events=SqlWebhookEventStore(),
            bookings=SqlBookingStore(),
        )
    raise ValueError(f"Unknown storage backend: {backend}")


__all__ = [
    "BookingStore",
    "CredentialStore",
    "WebhookEventStore",
    "InMemoryBookingStore",
    "InMemoryCredentialStore",
    "InMemoryWebhookEventStore",
    "Stores",
    "build_stores",
]
