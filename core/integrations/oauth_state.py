"""
Signed OAuth ``state`` tokens.

The state parameter round-trips through the provider untouched and comes
back on the callback. It carries the initiating user, the post-auth
redirect target and, for PKCE providers, the code verifier, so the
callback needs no server-side session. The payload is HMAC-signed and
carries an expiry, so it cannot be forged or replayed indefinitely.

Format: ``base64url(json payload) "." base64url(HMAC-SHA256(payload))``
"""
from __future__ import annotations
from typing import Any, Callable
import base64
import hashlib
import hmac
import json
import secrets
import string
import time

from core.errors import OAuthStateError

B64URL_ALPHABET = frozenset(string.ascii_letters + string.digits + "-_")


def _is_b64url(text: str) -> bool:
    return bool(text) and all(c in B64URL_ALPHABET for c in text)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class OAuthStateSigner:
    """Signs and verifies short-lived state payloads."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("OAuth state secret must be configured")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _signature(self, body: bytes) -> str:
        return _b64encode(hmac.new(self._secret, body, hashlib.sha256).digest())

    def sign(self, payload: dict[str, Any]) -> str:
        claims = dict(payload)
        claims["exp"] = int(self._clock()) + self.ttl_seconds
        claims["nonce"] = secrets.token_urlsafe(8)
        body = json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{_b64encode(body)}.{self._signature(body)}"

    def verify(self, token: str | None) -> dict[str, Any]:
        """Return the payload, or raise ``OAuthStateError``."""
        if not token or token.count(".") != 1:
            raise OAuthStateError("Malformed OAuth state")
        encoded_body, signature = token.split(".")
        if not _is_b64url(encoded_body) or not _is_b64url(signature):
            raise OAuthStateError("Malformed OAuth state")
        try:
            body = _b64decode(encoded_body)
        except (ValueError, TypeError):
            raise OAuthStateError("Malformed OAuth state") from None

        if not hmac.compare_digest(self._signature(body), signature):
            raise OAuthStateError("OAuth state signature mismatch")

        try:
            claims = json.loads(body)
        except ValueError:
            raise OAuthStateError("Malformed OAuth state") from None
        if not isinstance(claims, dict):
            raise OAuthStateError("Malformed OAuth state")

        exp = claims.pop("exp", None)
        claims.pop("nonce", None)
        if not isinstance(exp, int) or self._clock() >= exp:
            raise OAuthStateError("OAuth state expired")
        return claims


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------

def generate_code_verifier(length: int = 64) -> str:
    """RFC 7636 code verifier: 43-128 unreserved characters."""
    if not 43 <= length <= 128:
        raise ValueError("PKCE verifier length must be between 43 and 128")
    return secrets.token_urlsafe(length)[:length]


def code_challenge_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64encode(digest)
