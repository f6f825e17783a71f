"""Stripe event envelopes. The event ``id`` is the idempotency key."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.integrations.entities import InboundEvent
from providers.base import parse_envelope

PROVIDER = "stripe"


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: dict[str, Any]


class StripeEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    created: Optional[int] = None
    livemode: bool = False
    data: StripeEventData


def parse_event(body: bytes) -> InboundEvent:
    event = parse_envelope(StripeEvent, body, PROVIDER)
    return InboundEvent(
        provider=PROVIDER,
        event_id=event.id,
        event_type=event.type,
        payload=event.model_dump(),
    )
