"""Provider wiring contracts.

A ``ProviderDefinition`` is the static description of one provider
(signature scheme, payload parser, handlers, REST adapter). At startup
``providers.registry.build_integrations`` turns each definition into a
``ProviderIntegration`` bound to settings, stores and the provider's
breaker and retry manager.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from core.config import ProviderSettings
from core.errors import WebhookPayloadError
from core.integrations.adapter_base import AdapterBase
from core.integrations.entities import InboundEvent
from core.integrations.oauth_manager import OAuthTokenManager
from core.integrations.refresh_job import TokenRefreshJob
from core.integrations.webhooks import SignatureVerifier, WebhookDispatcher

if TYPE_CHECKING:
    from core.storage import Stores

M = TypeVar("M", bound=BaseModel)

ChallengeResponder = Callable[[InboundEvent, SignatureVerifier], Optional[dict[str, Any]]]


def parse_envelope(model: type[M], body: bytes, provider: str) -> M:
    """Validate a raw webhook body against ``model`` or raise ``WebhookPayloadError``."""
    try:
        return model.model_validate_json(body)
    except ValidationError as exc:
        raise WebhookPayloadError(
            f"Invalid {provider} webhook payload ({exc.error_count()} errors)",
            provider=provider,
        ) from exc


@dataclass(frozen=True)
class ProviderDefinition:
    name: str
    verifier_factory: Callable[[str], SignatureVerifier]
    parse_event: Callable[[bytes], InboundEvent]
    register_handlers: Callable[[WebhookDispatcher, "Stores"], None]
    adapter_class: Optional[type[AdapterBase]] = None
    challenge: Optional[ChallengeResponder] = None


@dataclass
class ProviderIntegration:
    """Everything the API needs to serve one provider."""

    definition: ProviderDefinition
    settings: ProviderSettings
    dispatcher: WebhookDispatcher
    verifier: SignatureVerifier | None = None
    oauth: OAuthTokenManager | None = None
    adapter: AdapterBase | None = None
    refresh_job: TokenRefreshJob | None = None

    @property
    def name(self) -> str:
        return self.definition.name

    def parse_event(self, body: bytes) -> InboundEvent:
        return self.definition.parse_event(body)

    def challenge_response(self, event: InboundEvent) -> dict[str, Any] | None:
        """Handshake reply for provider validation requests, None for regular events."""
        if self.definition.challenge is None or self.verifier is None:
            return None
        return self.definition.challenge(event, self.verifier)
