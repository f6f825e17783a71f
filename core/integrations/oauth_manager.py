"""
OAuth2 Token Lifecycle Manager.

Three-legged OAuth for calendar providers (Cal.com, Calendly):
- Authorization URL with signed state (and PKCE challenge where used)
- Authorization code exchange
- Refresh inside a safety margin before expiry
- Disconnect with best-effort revocation

Credential lifecycle per (user, provider):

    NONE → CONNECTED (exchange) → CONNECTED (refresh)
         → DISCONNECTED (explicit disconnect, or invalid_grant on refresh)

DISCONNECTED is terminal until the user authorizes again. Every exchange
and refresh upserts the credential; the store is the single source of
truth and tokens are not cached beyond one request.

Two concurrent refreshes of the same credential are allowed (last write
wins). Providers that rotate refresh tokens may invalidate the older one.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import urlencode
import logging

from core.config import ProviderSettings
from core.errors import (
    IntegrationError,
    ProviderHTTPError,
    ProviderUnavailableError,
    ReauthorizationRequiredError,
    TokenExchangeError,
    TokenRefreshError,
    is_terminal_auth_error,
)
from core.integrations.adapter_base import ResilientHTTP
from core.integrations.entities import (
    ConnectionStatus,
    IntegrationCredential,
    OAuthTokens,
    utcnow,
)
from core.observability.otel_setup import provider_span
from core.storage.base import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


class OAuthTokenManager:
    """Token lifecycle for one provider."""

    def __init__(
        self,
        settings: ProviderSettings,
        store: CredentialStore,
        http: ResilientHTTP,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.http = http
        self.refresh_margin = refresh_margin
        self._clock = clock

    @property
    def provider(self) -> str:
        return self.settings.name

    def now(self) -> datetime:
        return self._clock()

    # --- Authorization ---

    def build_authorization_url(
        self,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        """Provider authorize URL. ``state`` is passed through unmodified."""
        params = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "state": state,
        }
        scopes = self.settings.scopes + (extra_scopes or [])
        if scopes:
            params["scope"] = " ".join(scopes)
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    # --- Token endpoint ---

    async def _token_request(self, payload: dict[str, str]) -> dict[str, Any]:
        body_kwarg = "json" if self.settings.token_request_format == "json" else "data"
        resp = await self.http.send(
            "POST",
            self.settings.token_url,
            headers={"Accept": "application/json"},
            **{body_kwarg: payload},
        )
        try:
            data = resp.json()
        except ValueError:
            raise ProviderHTTPError(
                f"{self.provider} token endpoint returned non-JSON body",
                provider=self.provider,
                http_status=resp.status_code,
                body=resp.text[:500],
            ) from None

        # Cal.com managed-user responses wrap the tokens in "data".
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ProviderHTTPError(
                f"{self.provider} token response has no access_token",
                provider=self.provider,
                http_status=resp.status_code,
                body=resp.text[:500],
            )
        return data

    def _tokens_from(self, data: dict[str, Any]) -> OAuthTokens:
        expires_in = data.get("expires_in")
        scope = data.get("scope", [])
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._clock() + timedelta(seconds=int(expires_in)) if expires_in else None,
            token_type=data.get("token_type", "Bearer"),
            scopes=scope.split() if isinstance(scope, str) else list(scope or []),
            provider_user_id=data.get("owner") or data.get("user_id"),
        )

    def _client_credentials(self) -> dict[str, str]:
        return {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }

    # --- Exchange ---

    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> OAuthTokens:
        """POST the authorization code to the token endpoint."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self.settings.redirect_uri,
            **self._client_credentials(),
        }
        if code_verifier:
            payload["code_verifier"] = code_verifier

        with provider_span("oauth.exchange", self.provider):
            try:
                data = await self._token_request(payload)
            except ProviderHTTPError as exc:
                logger.error(
                    "Token exchange failed for %s: HTTP %s", self.provider, exc.http_status
                )
                raise TokenExchangeError(
                    f"Token exchange with {self.provider} failed",
                    provider=self.provider,
                    http_status=exc.http_status,
                    body=exc.body,
                    retryable=exc.retryable,
                ) from exc
        return self._tokens_from(data)

    async def connect(
        self,
        user_id: str,
        code: str,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> IntegrationCredential:
        """Exchange a code and upsert the user's credential as CONNECTED."""
        tokens = await self.exchange_code_for_tokens(code, redirect_uri, code_verifier)
        credential = IntegrationCredential(
            user_id=user_id,
            provider=self.provider,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            scopes=tokens.scopes or list(self.settings.scopes),
            status=ConnectionStatus.CONNECTED,
            provider_user_id=tokens.provider_user_id,
        )
        stored = await self.store.upsert(credential)
        logger.info("Connected %s for user %s", self.provider, user_id)
        return stored

    # --- Refresh ---

    def needs_refresh(self, credential: IntegrationCredential, now: datetime | None = None) -> bool:
        if credential.expires_at is None:
            return False
        now = now or self._clock()
        return credential.expires_at - now <= self.refresh_margin

    async def _mark_failed(
        self, credential: IntegrationCredential, status: ConnectionStatus
    ) -> IntegrationCredential:
        return await self.store.upsert(
            credential.copy(status=status, failed_refresh_count=credential.failed_refresh_count + 1)
        )

    async def refresh_access_token(
        self, credential: IntegrationCredential, force: bool = False
    ) -> IntegrationCredential:
        """
        Refresh when the token expires within the safety margin.

        invalid_grant-class failures disconnect the credential and raise
        ``ReauthorizationRequiredError``; refresh tokens do not self-heal.
        Other failures mark it ERROR and raise ``TokenRefreshError``. An open
        circuit raises ``ProviderUnavailableError`` and leaves it untouched.
        """
        if credential.status == ConnectionStatus.DISCONNECTED:
            raise ReauthorizationRequiredError(
                f"{self.provider} is disconnected for user {credential.user_id}",
                provider=self.provider,
            )
        if not force and not self.needs_refresh(credential):
            return credential
        if not credential.refresh_token:
            await self.store.upsert(credential.copy(status=ConnectionStatus.DISCONNECTED))
            raise ReauthorizationRequiredError(
                f"No refresh token stored for {self.provider}",
                provider=self.provider,
            )

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
            **self._client_credentials(),
        }
        with provider_span("oauth.refresh", self.provider):
            try:
                data = await self._token_request(payload)
            except ProviderHTTPError as exc:
                if is_terminal_auth_error(exc.body) or exc.http_status == 401:
                    await self._mark_failed(credential, ConnectionStatus.DISCONNECTED)
                    logger.warning(
                        "Refresh token rejected by %s for user %s, disconnecting",
                        self.provider, credential.user_id,
                    )
                    raise ReauthorizationRequiredError(
                        f"{self.provider} rejected the refresh token",
                        provider=self.provider,
                        http_status=exc.http_status,
                        body=exc.body,
                    ) from exc
                await self._mark_failed(credential, ConnectionStatus.ERROR)
                logger.error(
                    "Token refresh failed for %s user %s: HTTP %s",
                    self.provider, credential.user_id, exc.http_status,
                )
                raise TokenRefreshError(
                    f"Token refresh with {self.provider} failed",
                    provider=self.provider,
                    http_status=exc.http_status,
                    body=exc.body,
                    retryable=exc.retryable,
                ) from exc

        tokens = self._tokens_from(data)
        refreshed = credential.copy(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or credential.refresh_token,
            expires_at=tokens.expires_at,
            scopes=tokens.scopes or credential.scopes,
            status=ConnectionStatus.CONNECTED,
            failed_refresh_count=0,
        )
        stored = await self.store.upsert(refreshed)
        logger.info("Refreshed %s token for user %s", self.provider, credential.user_id)
        return stored

    async def get_valid_credential(self, user_id: str) -> IntegrationCredential:
        """Load the credential, refreshing it first if it is about to expire."""
        credential = await self.store.get(user_id, self.provider)
        if credential is None or credential.status == ConnectionStatus.DISCONNECTED:
            raise ReauthorizationRequiredError(
                f"{self.provider} is not connected for user {user_id}",
                provider=self.provider,
            )
        return await self.refresh_access_token(credential)

    async def is_connected(self, user_id: str) -> bool:
        """
        Boolean view for callers that only need to know whether to prompt a reconnect.

        Only a terminal failure reports False. A transient refresh failure
        leaves the credential in ERROR, which the next refresh can recover.
        """
        try:
            await self.get_valid_credential(user_id)
        except ReauthorizationRequiredError:
            return False
        except (TokenRefreshError, ProviderUnavailableError) as exc:
            logger.warning(
                "Could not refresh %s token for user %s, still connected: %s",
                self.provider, user_id, exc,
            )
        return True

    # --- Disconnect ---

    async def disconnect(self, user_id: str) -> IntegrationCredential | None:
        credential = await self.store.get(user_id, self.provider)
        if credential is None:
            return None

        if self.settings.revoke_url:
            try:
                await self.http.send(
                    "POST",
                    self.settings.revoke_url,
                    data={"token": credential.access_token, **self._client_credentials()},
                )
            except IntegrationError as exc:
                logger.warning("Token revocation with %s failed: %s", self.provider, exc)

        stored = await self.store.upsert(credential.copy(status=ConnectionStatus.DISCONNECTED))
        logger.info("Disconnected %s for user %s", self.provider, user_id)
        return stored
