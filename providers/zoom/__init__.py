"""Zoom integration.

- Webhooks signed ``v0=…`` in ``x-zm-signature`` with ``x-zm-request-timestamp``
- ``endpoint.url_validation`` handshake answered before dispatch
- ``meeting.ended`` completes the linked booking
"""

from core.integrations.webhooks import ZoomSignatureVerifier
from providers.base import ProviderDefinition
from providers.zoom.adapter import ZoomAdapter
from providers.zoom.events import parse_event, url_validation_challenge
from providers.zoom.handlers import register_handlers

DEFINITION = ProviderDefinition(
    name="zoom",
    verifier_factory=ZoomSignatureVerifier,
    parse_event=parse_event,
    register_handlers=register_handlers,
    adapter_class=ZoomAdapter,
    challenge=url_validation_challenge,
)

__all__ = ["DEFINITION", "ZoomAdapter", "parse_event", "register_handlers"]
