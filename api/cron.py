"""Scheduled jobs, triggered by the platform scheduler with a shared secret."""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from api.deps import get_oauth_integration
from api.schemas import RefreshJobResponse
from providers.base import ProviderIntegration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron")


def require_cron_secret(request: Request, authorization: str = Header("")) -> None:
    secret = request.app.state.settings.cron_secret
    if not secret:
        logger.error("CRON_SECRET is not configured; refusing cron request")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post(
    "/refresh-tokens/{provider}",
    response_model=RefreshJobResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def refresh_tokens(integration: ProviderIntegration = Depends(get_oauth_integration)):
    report = await integration.refresh_job.run()
    return RefreshJobResponse(provider=integration.name, results=report.to_dict())
