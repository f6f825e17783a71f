"""Calendly webhook payloads and signature scheme."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from core.errors import WebhookPayloadError
from core.integrations.entities import InboundEvent
from core.integrations.normalizer import get_path
from core.integrations.webhooks import TimestampedSignatureVerifier
from providers.base import parse_envelope

PROVIDER = "calendly"

INVITEE_CREATED = "invitee.created"
INVITEE_CANCELED = "invitee.canceled"


class CalendlySignatureVerifier(TimestampedSignatureVerifier):
    """Same ``t=…,v1=…`` scheme as Stripe under Calendly's header name."""

    header = "calendly-webhook-signature"


class CalendlyWebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    created_at: str
    created_by: Optional[str] = None
    payload: dict[str, Any]


def parse_event(body: bytes) -> InboundEvent:
    envelope = parse_envelope(CalendlyWebhookEnvelope, body, PROVIDER)
    invitee_uri = envelope.payload.get("uri")
    if not invitee_uri:
        raise WebhookPayloadError("Calendly payload has no uri", provider=PROVIDER)
    if envelope.event.startswith("invitee.") and not get_path(envelope.payload, "scheduled_event.uri"):
        raise WebhookPayloadError("Calendly invitee payload has no scheduled event", provider=PROVIDER)

    return InboundEvent(
        provider=PROVIDER,
        event_id=f"{envelope.event}:{invitee_uri}:{envelope.created_at}",
        event_type=envelope.event,
        payload=envelope.model_dump(),
    )
