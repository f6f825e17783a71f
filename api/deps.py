"""FastAPI dependencies resolving per-request collaborators from app state."""

from fastapi import HTTPException, Request

from api.middleware import get_current_user
from core.integrations.oauth_state import OAuthStateSigner
from providers.base import ProviderIntegration


def get_integration(provider: str, request: Request) -> ProviderIntegration:
    integration = request.app.state.integrations.get(provider)
    if integration is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    return integration


def get_oauth_integration(provider: str, request: Request) -> ProviderIntegration:
    integration = get_integration(provider, request)
    if integration.oauth is None:
        raise HTTPException(status_code=404, detail=f"OAuth is not configured for {provider}")
    return integration


def get_state_signer(request: Request) -> OAuthStateSigner:
    signer = request.app.state.state_signer
    if signer is None:
        raise HTTPException(status_code=500, detail="OAuth state secret is not configured")
    return signer


async def require_user() -> str:
    user_id = get_current_user()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id
