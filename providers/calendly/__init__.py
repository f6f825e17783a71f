"""Calendly integration.

- OAuth with form-encoded token requests and PKCE
- Webhooks signed ``t=…,v1=…`` in ``calendly-webhook-signature``
- Invitee created/canceled handlers
"""

from providers.base import ProviderDefinition
from providers.calendly.adapter import CalendlyAdapter
from providers.calendly.events import CalendlySignatureVerifier, parse_event
from providers.calendly.handlers import register_handlers

DEFINITION = ProviderDefinition(
    name="calendly",
    verifier_factory=CalendlySignatureVerifier,
    parse_event=parse_event,
    register_handlers=register_handlers,
    adapter_class=CalendlyAdapter,
)

__all__ = ["CalendlyAdapter", "CalendlySignatureVerifier", "DEFINITION", "parse_event", "register_handlers"]
