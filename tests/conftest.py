"""Shared fixtures: settings with test secrets, fake clocks, in-memory stores."""
from datetime import datetime, timezone

import pytest

from core.config import AppSettings, ProviderSettings, ResilienceSettings
from core.storage import build_stores

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic seconds under test control."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def stores():
    return build_stores("memory")


@pytest.fixture
def cal_settings():
    return ProviderSettings(
        name="cal",
        client_id="cal-client",
        client_secret="cal-secret-value",
        webhook_secret="cal-webhook-secret",
        redirect_uri="https://app.test/oauth/cal/callback",
        api_base_url="https://api.cal.com/v2",
        authorize_url="https://app.cal.com/auth/oauth2/authorize",
        token_url="https://api.cal.com/v2/oauth/token",
        scopes=["READ_BOOKING", "READ_PROFILE"],
        token_request_format="json",
    )


@pytest.fixture
def calendly_settings():
    return ProviderSettings(
        name="calendly",
        client_id="calendly-client",
        client_secret="calendly-secret-value",
        webhook_secret="calendly-webhook-secret",
        redirect_uri="https://app.test/oauth/calendly/callback",
        api_base_url="https://api.calendly.com",
        authorize_url="https://auth.calendly.com/oauth/authorize",
        token_url="https://auth.calendly.com/oauth/token",
        revoke_url="https://auth.calendly.com/oauth/revoke",
        token_request_format="form",
        use_pkce=True,
    )


@pytest.fixture
def app_settings(cal_settings, calendly_settings):
    return AppSettings(
        providers={
            "cal": cal_settings,
            "calendly": calendly_settings,
            "stripe": ProviderSettings(
                name="stripe",
                webhook_secret="whsec_test_secret",
                api_base_url="https://api.stripe.com/v1",
            ),
            "zoom": ProviderSettings(
                name="zoom",
                webhook_secret="zoom-webhook-secret",
                api_base_url="https://api.zoom.us/v2",
            ),
        },
        resilience=ResilienceSettings(),
        state_secret="state-signing-secret",
        cron_secret="cron-secret",
        frontend_url="https://app.test",
        cors_origins=["https://app.test"],
    )
