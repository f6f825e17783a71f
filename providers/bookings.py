"""Booking state transitions shared by the provider webhook handlers.

Deliveries arrive in any order. A CANCELLED booking is final: later
create/update/reschedule events for it are ignored, and a cancellation
for a booking we have never seen leaves a CANCELLED tombstone so a
delayed BOOKING_CREATED redelivery cannot resurrect it.
"""

from __future__ import annotations

import logging
from typing import Any

from core.integrations.entities import Booking, BookingStatus
from core.integrations.normalizer import NormalizedBooking
from core.storage.base import BookingStore

logger = logging.getLogger(__name__)


def _booking_fields(normalized: NormalizedBooking) -> dict[str, Any]:
    fields = {
        "title": normalized.title,
        "start_time": normalized.start_time,
        "end_time": normalized.end_time,
        "attendee_email": normalized.attendee_email,
        "attendee_name": normalized.attendee_name,
    }
    if normalized.meeting_id:
        fields["meeting_id"] = normalized.meeting_id
    return fields


async def upsert_booking(
    store: BookingStore,
    normalized: NormalizedBooking,
    status: BookingStatus,
    user_id: str | None = None,
) -> Booking:
    """Create or update a booking unless it is already cancelled."""
    existing = await store.get(normalized.external_id)
    if existing is not None and existing.status == BookingStatus.CANCELLED:
        logger.info(
            "Booking %s is cancelled, ignoring %s update", normalized.external_id, status.value
        )
        return existing

    fields = _booking_fields(normalized)
    if existing is None:
        return await store.save(
            Booking(
                external_id=normalized.external_id,
                provider=normalized.provider,
                user_id=user_id,
                status=status,
                **fields,
            )
        )
    if user_id and not existing.user_id:
        fields["user_id"] = user_id
    return await store.update(normalized.external_id, status=status, **fields)


async def cancel_booking(
    store: BookingStore,
    external_id: str,
    provider: str,
    reason: str | None = None,
    user_id: str | None = None,
    **changes: Any,
) -> Booking:
    """Cancel in a single write. ``changes`` ride along, e.g. ``payment_status``."""
    existing = await store.get(external_id)
    if existing is None:
        logger.info("Cancellation for unknown booking %s, storing tombstone", external_id)
        return await store.save(
            Booking(
                external_id=external_id,
                provider=provider,
                user_id=user_id,
                status=BookingStatus.CANCELLED,
                cancellation_reason=reason,
                **changes,
            )
        )
    if existing.status == BookingStatus.CANCELLED:
        return existing
    return await store.update(
        external_id, status=BookingStatus.CANCELLED, cancellation_reason=reason, **changes
    )


async def complete_booking(store: BookingStore, booking: Booking) -> Booking:
    """Mark a held session as COMPLETED. Cancelled bookings stay cancelled."""
    if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
        return booking
    return await store.update(booking.external_id, status=BookingStatus.COMPLETED)
