"""Cal.com integration.

- OAuth with JSON-encoded token requests (managed users)
- Webhooks signed with a hex HMAC in ``x-cal-signature-256``
- Booking lifecycle handlers and webhook subscription management
"""

from core.integrations.webhooks import HexSignatureVerifier
from providers.base import ProviderDefinition
from providers.cal.adapter import CalAdapter
from providers.cal.events import parse_event
from providers.cal.handlers import register_handlers

DEFINITION = ProviderDefinition(
    name="cal",
    verifier_factory=HexSignatureVerifier,
    parse_event=parse_event,
    register_handlers=register_handlers,
    adapter_class=CalAdapter,
)

__all__ = ["CalAdapter", "DEFINITION", "parse_event", "register_handlers"]
