"""
Scheduled token refresh.

Refreshes every refreshable credential of one provider expiring within
a horizon (default one hour), oldest expiry first. Runs under the
provider's circuit breaker: once it opens, the remaining credentials are
skipped and left for the next run.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
import logging

from core.errors import (
    ProviderUnavailableError,
    ReauthorizationRequiredError,
    TokenRefreshError,
)
from core.integrations.oauth_manager import OAuthTokenManager
from core.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = timedelta(hours=1)


@dataclass
class RefreshReport:
    provider: str
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class TokenRefreshJob:
    def __init__(self, manager: OAuthTokenManager, breaker: CircuitBreaker):
        self.manager = manager
        self.breaker = breaker

    async def run(self, horizon: timedelta = DEFAULT_HORIZON) -> RefreshReport:
        provider = self.manager.provider
        report = RefreshReport(provider=provider)
        before = self.manager.now() + horizon
        credentials = await self.manager.store.list_expiring(provider, before)
        if not credentials:
            logger.info("No %s tokens to refresh", provider)
            return report

        for index, credential in enumerate(credentials):
            if self.breaker.is_open():
                report.skipped = len(credentials) - index
                logger.warning(
                    "Circuit open for %s, skipping %d remaining refreshes", provider, report.skipped
                )
                break
            try:
                await self.manager.refresh_access_token(credential, force=True)
                report.success += 1
            except ProviderUnavailableError:
                report.skipped = len(credentials) - index
                logger.warning("Circuit opened for %s mid-run", provider)
                break
            except (ReauthorizationRequiredError, TokenRefreshError) as exc:
                report.failed += 1
                report.errors.append(f"{credential.user_id}: {exc.message}")

        logger.info(
            "Refreshed %s tokens: %d ok, %d failed, %d skipped",
            provider, report.success, report.failed, report.skipped,
        )
        return report
