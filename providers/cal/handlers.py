"""Cal.com booking handlers.

The organizer is mapped to one of our users through the Cal.com
managed-user id stored on their credential.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.integrations.entities import BookingStatus, InboundEvent
from core.integrations.normalizer import (
    DEFAULT_BOOKING_MAPPINGS,
    BookingNormalizer,
    NormalizedBooking,
)
from core.integrations.webhooks import WebhookDispatcher
from providers.bookings import cancel_booking, complete_booking, upsert_booking
from providers.cal.events import PROVIDER, CalTrigger

if TYPE_CHECKING:
    from core.storage import Stores

logger = logging.getLogger(__name__)

STATUS_BY_TRIGGER = {
    CalTrigger.BOOKING_CREATED: BookingStatus.CONFIRMED,
    CalTrigger.BOOKING_UPDATED: BookingStatus.CONFIRMED,
    CalTrigger.BOOKING_RESCHEDULED: BookingStatus.CONFIRMED,
    CalTrigger.BOOKING_REQUESTED: BookingStatus.PENDING,
    CalTrigger.BOOKING_REJECTED: BookingStatus.REJECTED,
}


def register_handlers(
    dispatcher: WebhookDispatcher,
    stores: "Stores",
    normalizer: BookingNormalizer | None = None,
) -> None:
    normalizer = normalizer or BookingNormalizer(DEFAULT_BOOKING_MAPPINGS)

    def normalize(event: InboundEvent) -> NormalizedBooking:
        return normalizer.normalize_booking(PROVIDER, event.payload.get("payload") or {})

    async def owner_of(booking: NormalizedBooking) -> str | None:
        if not booking.organizer_id:
            return None
        credential = await stores.credentials.find_by_provider_user(PROVIDER, booking.organizer_id)
        if credential is None:
            logger.warning("No Cal.com credential for organizer %s", booking.organizer_id)
            return None
        return credential.user_id

    async def on_booking_change(event: InboundEvent) -> dict[str, Any]:
        normalized = normalize(event)
        status = STATUS_BY_TRIGGER[CalTrigger(event.event_type)]
        booking = await upsert_booking(
            stores.bookings, normalized, status, user_id=await owner_of(normalized)
        )
        return {"booking": booking.external_id, "status": booking.status.value}

    async def on_booking_cancelled(event: InboundEvent) -> dict[str, Any]:
        normalized = normalize(event)
        booking = await cancel_booking(
            stores.bookings,
            normalized.external_id,
            PROVIDER,
            reason=normalized.cancellation_reason or "Cancelled via Cal.com",
            user_id=await owner_of(normalized),
        )
        return {"booking": booking.external_id, "status": booking.status.value}

    async def on_meeting_ended(event: InboundEvent) -> dict[str, Any]:
        normalized = normalize(event)
        booking = await stores.bookings.get(normalized.external_id) if normalized.external_id else None
        if booking is None:
            return {"booking": normalized.external_id or None, "status": "unknown"}
        booking = await complete_booking(stores.bookings, booking)
        return {"booking": booking.external_id, "status": booking.status.value}

    for trigger in STATUS_BY_TRIGGER:
        dispatcher.register(trigger.value, on_booking_change)
    dispatcher.register(CalTrigger.BOOKING_CANCELLED.value, on_booking_cancelled)
    dispatcher.register(CalTrigger.MEETING_ENDED.value, on_meeting_ended)
