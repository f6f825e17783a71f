"""Stripe integration: signed payment webhooks only, no REST adapter."""

from core.integrations.webhooks import TimestampedSignatureVerifier
from providers.base import ProviderDefinition
from providers.stripe.events import parse_event
from providers.stripe.handlers import register_handlers

DEFINITION = ProviderDefinition(
    name="stripe",
    verifier_factory=TimestampedSignatureVerifier,
    parse_event=parse_event,
    register_handlers=register_handlers,
)

__all__ = ["DEFINITION", "parse_event", "register_handlers"]
