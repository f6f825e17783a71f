"""Zoom webhook payloads, including the endpoint URL validation handshake."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.errors import WebhookPayloadError
from core.integrations.entities import InboundEvent
from core.integrations.webhooks import SignatureVerifier, ZoomSignatureVerifier
from providers.base import parse_envelope

PROVIDER = "zoom"

URL_VALIDATION = "endpoint.url_validation"
MEETING_ENDED = "meeting.ended"


class ZoomEventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    account_id: Optional[str] = None
    object: dict[str, Any] = Field(default_factory=dict)
    plain_token: Optional[str] = Field(None, alias="plainToken")


class ZoomEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    event_ts: int
    payload: ZoomEventPayload


def parse_event(body: bytes) -> InboundEvent:
    envelope = parse_envelope(ZoomEvent, body, PROVIDER)
    if envelope.event == URL_VALIDATION:
        if not envelope.payload.plain_token:
            raise WebhookPayloadError("URL validation without plainToken", provider=PROVIDER)
        event_id = f"{URL_VALIDATION}:{envelope.event_ts}"
    else:
        object_id = envelope.payload.object.get("id", "")
        event_id = f"{envelope.event}:{object_id}:{envelope.event_ts}"

    return InboundEvent(
        provider=PROVIDER,
        event_id=event_id,
        event_type=envelope.event,
        payload=envelope.model_dump(by_alias=True),
    )


def url_validation_challenge(event: InboundEvent, verifier: SignatureVerifier) -> dict[str, str] | None:
    if event.event_type != URL_VALIDATION or not isinstance(verifier, ZoomSignatureVerifier):
        return None
    return verifier.url_validation_response(event.payload["payload"]["plainToken"])
