"""
Core Integrations — provider-facing reliability layer.

- AdapterBase / ResilientHTTP: circuit breaker → retry → httpx with timeout
- Entities: credentials, inbound webhook events, bookings
- BookingNormalizer: provider payload → canonical booking
- OAuthStateSigner: signed, expiring OAuth ``state`` plus PKCE helpers

Modules that depend on the storage contracts are imported by path:
``core.integrations.oauth_manager``, ``core.integrations.webhooks``,
``core.integrations.refresh_job``.
"""
from core.integrations.adapter_base import (
    AdapterBase,
    AdapterRequest,
    AdapterResponse,
    ResilientHTTP,
    classify_response,
)
from core.integrations.entities import (
    Booking,
    BookingStatus,
    ConnectionStatus,
    EventStatus,
    InboundEvent,
    IntegrationCredential,
    OAuthTokens,
    WebhookEvent,
)
from core.integrations.normalizer import (
    BookingNormalizer,
    FieldMapping,
    NormalizedBooking,
    SchemaMapping,
    TRANSFORMS,
)
from core.integrations.oauth_state import (
    OAuthStateSigner,
    code_challenge_s256,
    generate_code_verifier,
)

__all__ = [
    # Adapter
    "AdapterBase",
    "AdapterRequest",
    "AdapterResponse",
    "ResilientHTTP",
    "classify_response",
    # Entities
    "Booking",
    "BookingStatus",
    "ConnectionStatus",
    "EventStatus",
    "InboundEvent",
    "IntegrationCredential",
    "OAuthTokens",
    "WebhookEvent",
    # Normalizer
    "BookingNormalizer",
    "FieldMapping",
    "NormalizedBooking",
    "SchemaMapping",
    "TRANSFORMS",
    # OAuth state
    "OAuthStateSigner",
    "code_challenge_s256",
    "generate_code_verifier",
]
