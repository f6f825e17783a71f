"""Inbound webhook endpoint for every provider.

    raw body → signature check → parse → (handshake) → idempotent dispatch

The body is read once as bytes and verified before any parsing; the
signature covers the exact bytes the provider sent.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.deps import get_integration
from core.errors import IntegrationError, SignatureError
from providers.base import ProviderIntegration

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/{provider}")
async def receive_webhook(
    request: Request,
    integration: ProviderIntegration = Depends(get_integration),
):
    if integration.verifier is None:
        raise IntegrationError("Webhook secret not configured", provider=integration.name)

    body = await request.body()
    if not integration.verifier.verify(body, request.headers):
        logger.warning("Rejected %s webhook with invalid signature", integration.name)
        raise SignatureError("Invalid signature", provider=integration.name)

    event = integration.parse_event(body)

    challenge = integration.challenge_response(event)
    if challenge is not None:
        return JSONResponse(challenge)

    result = await integration.dispatcher.dispatch(event)
    return JSONResponse(result.to_dict(), status_code=result.http_status)
