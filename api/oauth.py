"""OAuth connect/disconnect endpoints for calendar providers.

The ``state`` parameter is a signed, expiring token carrying the user
id, the post-connect redirect path and, for PKCE providers, the code
verifier, so the callback needs no server-side session.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from api.deps import get_oauth_integration, get_state_signer, require_user
from api.schemas import (
    ConnectionStatusResponse,
    DisconnectResponse,
    TokenExchangeRequest,
    TokenExchangeResponse,
)
from core.errors import OAuthStateError
from core.integrations.oauth_state import (
    OAuthStateSigner,
    code_challenge_s256,
    generate_code_verifier,
)
from providers.base import ProviderIntegration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth")

DEFAULT_REDIRECT = "/dashboard/settings"


def _safe_redirect_path(path: Optional[str]) -> str:
    """Only same-site relative paths; anything else falls back to the default."""
    if not path or not path.startswith("/") or path.startswith("//") or "\\" in path:
        return DEFAULT_REDIRECT
    return path


def _frontend_url(request: Request, path: str, **params: str) -> str:
    base = request.app.state.settings.frontend_url.rstrip("/")
    query = f"?{urlencode(params)}" if params else ""
    return f"{base}{path}{query}"


@router.get("/{provider}/authorize")
async def authorize(
    redirect: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    integration: ProviderIntegration = Depends(get_oauth_integration),
    signer: OAuthStateSigner = Depends(get_state_signer),
):
    claims = {
        "user_id": user_id,
        "provider": integration.name,
        "redirect": _safe_redirect_path(redirect),
    }
    code_challenge = None
    if integration.settings.use_pkce:
        verifier = generate_code_verifier()
        claims["code_verifier"] = verifier
        code_challenge = code_challenge_s256(verifier)

    url = integration.oauth.build_authorization_url(signer.sign(claims), code_challenge)
    logger.info("Starting %s OAuth for user %s", integration.name, user_id)
    return RedirectResponse(url, status_code=307)


@router.get("/{provider}/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    integration: ProviderIntegration = Depends(get_oauth_integration),
    signer: OAuthStateSigner = Depends(get_state_signer),
):
    claims = signer.verify(state)
    if claims.get("provider") != integration.name or not claims.get("user_id"):
        raise OAuthStateError("OAuth state does not match this provider", provider=integration.name)
    redirect = _safe_redirect_path(claims.get("redirect"))

    if error or not code:
        logger.warning("%s authorization was not granted: %s", integration.name, error or "no code")
        return RedirectResponse(
            _frontend_url(request, redirect, error=error or "missing_code", provider=integration.name),
            status_code=307,
        )

    await integration.oauth.connect(
        claims["user_id"], code, code_verifier=claims.get("code_verifier")
    )
    return RedirectResponse(
        _frontend_url(request, redirect, connected=integration.name), status_code=307
    )


@router.post("/{provider}/token-exchange", response_model=TokenExchangeResponse)
async def token_exchange(
    body: TokenExchangeRequest,
    user_id: str = Depends(require_user),
    integration: ProviderIntegration = Depends(get_oauth_integration),
):
    credential = await integration.oauth.connect(
        user_id, body.code, redirect_uri=body.redirect_uri, code_verifier=body.code_verifier
    )
    return TokenExchangeResponse(
        provider=integration.name,
        access_token=credential.access_token,
        expires_at=credential.expires_at,
        scopes=credential.scopes,
    )


@router.post("/{provider}/disconnect", response_model=DisconnectResponse)
async def disconnect(
    user_id: str = Depends(require_user),
    integration: ProviderIntegration = Depends(get_oauth_integration),
):
    await integration.oauth.disconnect(user_id)
    return DisconnectResponse(provider=integration.name)


@router.get("/{provider}/status", response_model=ConnectionStatusResponse)
async def status(
    user_id: str = Depends(require_user),
    integration: ProviderIntegration = Depends(get_oauth_integration),
):
    connected = await integration.oauth.is_connected(user_id)
    credential = await integration.oauth.store.get(user_id, integration.name)
    return ConnectionStatusResponse(
        provider=integration.name,
        connected=connected,
        reconnect_required=credential is not None and not connected,
        credential=credential.to_dict() if credential else None,
    )
