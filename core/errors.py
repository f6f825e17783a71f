"""
Integration error taxonomy.

Errors produced at the HTTP boundary carry an explicit ``retryable`` flag,
so retry and breaker logic never has to re-parse error messages. The API
layer maps each class to a response status code.
"""
from __future__ import annotations
from typing import Any


# Provider error codes that a retry can never fix.
NON_RETRYABLE_MARKERS = ("invalid_grant", "invalid_token", "unauthorized")


class IntegrationError(Exception):
    """Base class for every error raised by the integration layer."""

    retryable: bool = False
    status_code: int = 500

    def __init__(self, message: str, *, provider: str = "", retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "provider": self.provider or None}


class ProviderHTTPError(IntegrationError):
    """A provider call failed. Produced by the resilient HTTP boundary."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        http_status: int | None = None,
        body: str = "",
        retryable: bool = False,
    ):
        super().__init__(message, provider=provider, retryable=retryable)
        self.http_status = http_status
        self.body = body


class ProviderUnavailableError(IntegrationError):
    """The provider's circuit breaker is open; no call was attempted."""

    status_code = 503
    retryable = True


class SignatureError(IntegrationError):
    """Webhook signature header missing, malformed or not matching."""

    status_code = 401


class WebhookPayloadError(IntegrationError):
    """Webhook body could not be parsed into a provider event.

    Answered with 400. Most providers stop redelivering on 4xx, but that
    is provider dependent and some still retry.
    """

    status_code = 400


class HandlerError(IntegrationError):
    """A registered webhook handler raised; answered with 500 for redelivery."""

    status_code = 500

    def __init__(self, message: str, *, provider: str = "", event_id: str = "", event_type: str = ""):
        super().__init__(message, provider=provider)
        self.event_id = event_id
        self.event_type = event_type


class OAuthStateError(IntegrationError):
    """OAuth ``state`` parameter was tampered with, expired or malformed."""

    status_code = 400


class TokenExchangeError(IntegrationError):
    """Authorization-code exchange failed."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        http_status: int | None = None,
        body: str = "",
        retryable: bool = False,
    ):
        super().__init__(message, provider=provider, retryable=retryable)
        self.http_status = http_status
        self.body = body


class TokenRefreshError(TokenExchangeError):
    """Refresh-token grant failed."""


class ReauthorizationRequiredError(TokenRefreshError):
    """The credential is gone or DISCONNECTED; the user must reconnect."""

    status_code = 409
    retryable = False

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reconnect_required"] = True
        return data


def is_terminal_auth_error(text: str) -> bool:
    """True when a provider error body names a non-retryable auth failure."""
    lowered = text.lower()
    return any(marker in lowered for marker in NON_RETRYABLE_MARKERS)


def classify_error(error: BaseException) -> bool:
    """Return whether ``error`` is retryable.

    Tagged integration errors answer for themselves. Anything else is
    classified once, here, by its message.
    """
    if isinstance(error, IntegrationError):
        return error.retryable
    return not is_terminal_auth_error(str(error))
