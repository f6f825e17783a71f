"""Cal.com webhook payloads."""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.errors import WebhookPayloadError
from core.integrations.entities import InboundEvent
from providers.base import parse_envelope

PROVIDER = "cal"


class CalTrigger(str, Enum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_UPDATED = "BOOKING_UPDATED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_REQUESTED = "BOOKING_REQUESTED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    MEETING_ENDED = "MEETING_ENDED"
    PING = "PING"


class CalWebhookEnvelope(BaseModel):
    """Older deliveries name the trigger ``type``, newer ones ``triggerEvent``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    trigger_event: Optional[str] = Field(None, alias="triggerEvent")
    type: Optional[str] = None
    created_at: Optional[str] = Field(None, alias="createdAt")
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def trigger(self) -> str | None:
        return self.trigger_event or self.type


def parse_event(body: bytes) -> InboundEvent:
    envelope = parse_envelope(CalWebhookEnvelope, body, PROVIDER)
    trigger = envelope.trigger
    if not trigger:
        raise WebhookPayloadError("Missing triggerEvent/type in payload", provider=PROVIDER)

    uid = envelope.payload.get("uid")
    if trigger.startswith("BOOKING_") and not uid:
        raise WebhookPayloadError(f"{trigger} payload has no booking uid", provider=PROVIDER)

    if uid or envelope.created_at:
        event_id = f"{trigger}:{uid or ''}:{envelope.created_at or ''}"
    else:
        # Pings carry neither; the body itself is the identity.
        event_id = f"{trigger}:{hashlib.sha256(body).hexdigest()[:32]}"

    return InboundEvent(
        provider=PROVIDER,
        event_id=event_id,
        event_type=trigger,
        payload=envelope.model_dump(by_alias=True),
    )
