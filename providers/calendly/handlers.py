"""Calendly invitee handlers.

One invitee booking maps to one scheduled event; the scheduled event's
uuid is the booking's external id. A reschedule arrives as a
cancellation of the old event plus a new ``invitee.created``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from core.integrations.entities import BookingStatus, InboundEvent
from core.integrations.normalizer import DEFAULT_BOOKING_MAPPINGS, BookingNormalizer
from core.integrations.webhooks import WebhookDispatcher
from providers.bookings import cancel_booking, upsert_booking
from providers.calendly.events import INVITEE_CANCELED, INVITEE_CREATED, PROVIDER

if TYPE_CHECKING:
    from core.storage import Stores


def register_handlers(
    dispatcher: WebhookDispatcher,
    stores: "Stores",
    normalizer: BookingNormalizer | None = None,
) -> None:
    normalizer = normalizer or BookingNormalizer(DEFAULT_BOOKING_MAPPINGS)

    async def owner_of(event: InboundEvent, organizer_uri: str) -> str | None:
        for uri in (organizer_uri, event.payload.get("created_by")):
            if not uri:
                continue
            credential = await stores.credentials.find_by_provider_user(PROVIDER, uri)
            if credential is not None:
                return credential.user_id
        return None

    @dispatcher.on(INVITEE_CREATED)
    async def on_invitee_created(event: InboundEvent) -> dict[str, Any]:
        normalized = normalizer.normalize_booking(PROVIDER, event.payload["payload"])
        booking = await upsert_booking(
            stores.bookings,
            normalized,
            BookingStatus.CONFIRMED,
            user_id=await owner_of(event, normalized.organizer_id),
        )
        return {"booking": booking.external_id, "status": booking.status.value}

    @dispatcher.on(INVITEE_CANCELED)
    async def on_invitee_canceled(event: InboundEvent) -> dict[str, Any]:
        normalized = normalizer.normalize_booking(PROVIDER, event.payload["payload"])
        booking = await cancel_booking(
            stores.bookings,
            normalized.external_id,
            PROVIDER,
            reason=normalized.cancellation_reason or "Cancelled via Calendly",
            user_id=await owner_of(event, normalized.organizer_id),
        )
        return {"booking": booking.external_id, "status": booking.status.value}
