"""Stripe payment handlers.

Payments reach bookings through ``metadata.booking_id`` on the payment
intent or charge. Events for objects without that link, or for bookings
we do not know, are acknowledged and logged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.integrations.entities import BookingStatus, InboundEvent
from core.integrations.webhooks import WebhookDispatcher
from providers.bookings import cancel_booking
from providers.stripe.events import PROVIDER

if TYPE_CHECKING:
    from core.storage import Stores

logger = logging.getLogger(__name__)

PAYMENT_STATUS_BY_EVENT = {
    "payment_intent.succeeded": "paid",
    "payment_intent.payment_failed": "failed",
    "charge.refunded": "refunded",
    "charge.dispute.created": "disputed",
}


def booking_id_of(event: InboundEvent) -> str | None:
    obj = event.payload["data"]["object"]
    return (obj.get("metadata") or {}).get("booking_id")


def register_handlers(dispatcher: WebhookDispatcher, stores: "Stores") -> None:
    bookings = stores.bookings

    async def set_payment_status(event: InboundEvent, payment_status: str) -> dict[str, Any]:
        booking_id = booking_id_of(event)
        if not booking_id:
            logger.warning("Stripe %s %s has no booking_id metadata", event.event_type, event.event_id)
            return {"booking": None, "status": "unlinked"}

        booking = await bookings.get(booking_id)
        if booking is None:
            logger.warning("Stripe %s for unknown booking %s", event.event_type, booking_id)
            return {"booking": booking_id, "status": "unknown"}

        changes: dict[str, Any] = {"payment_status": payment_status}
        if payment_status == "paid" and booking.status == BookingStatus.PENDING:
            changes["status"] = BookingStatus.CONFIRMED
        booking = await bookings.update(booking_id, **changes)
        return {"booking": booking_id, "payment_status": booking.payment_status}

    async def on_payment_status(event: InboundEvent) -> dict[str, Any]:
        return await set_payment_status(event, PAYMENT_STATUS_BY_EVENT[event.event_type])

    async def on_payment_canceled(event: InboundEvent) -> dict[str, Any]:
        booking_id = booking_id_of(event)
        if not booking_id:
            logger.warning("Stripe cancellation %s has no booking_id metadata", event.event_id)
            return {"booking": None, "status": "unlinked"}
        obj = event.payload["data"]["object"]
        booking = await cancel_booking(
            bookings,
            booking_id,
            PROVIDER,
            reason=obj.get("cancellation_reason") or "Payment cancelled",
            payment_status="canceled",
        )
        return {"booking": booking.external_id, "status": booking.status.value}

    async def on_dispute_closed(event: InboundEvent) -> dict[str, Any]:
        outcome = event.payload["data"]["object"].get("status") or "closed"
        return await set_payment_status(event, f"dispute_{outcome}")

    for event_type in PAYMENT_STATUS_BY_EVENT:
        dispatcher.register(event_type, on_payment_status)
    dispatcher.register("payment_intent.canceled", on_payment_canceled)
    dispatcher.register("charge.dispute.closed", on_dispute_closed)
