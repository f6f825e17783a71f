"""Zoom meeting handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.integrations.entities import InboundEvent
from core.integrations.webhooks import WebhookDispatcher
from providers.bookings import complete_booking
from providers.zoom.events import MEETING_ENDED

if TYPE_CHECKING:
    from core.storage import Stores

logger = logging.getLogger(__name__)


def register_handlers(dispatcher: WebhookDispatcher, stores: "Stores") -> None:
    @dispatcher.on(MEETING_ENDED)
    async def on_meeting_ended(event: InboundEvent) -> dict[str, Any]:
        meeting_id = str(event.payload["payload"]["object"].get("id", ""))
        booking = await stores.bookings.find_by_meeting_id(meeting_id) if meeting_id else None
        if booking is None:
            logger.info("Zoom meeting %s ended with no linked booking", meeting_id)
            return {"meeting": meeting_id, "status": "unknown"}
        booking = await complete_booking(stores.bookings, booking)
        return {"meeting": meeting_id, "booking": booking.external_id, "status": booking.status.value}
