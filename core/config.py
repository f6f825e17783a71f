"""Environment-backed settings for the integration layer.

Every provider and resilience knob is a frozen dataclass built from
environment variables. Nothing secret is hardcoded, and secrets never
appear in full in reprs or log lines (see ``redact``).

Usage::

    settings = AppSettings.from_env()
    cal = settings.provider("cal")
    breaker_threshold = settings.resilience.failure_threshold
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields


def redact(value: str | None, keep: int = 4) -> str:
    """Mask a secret for diagnostics, keeping only a short prefix."""
    if not value:
        return "<unset>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}{'*' * 6}"


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.replace(",", " ").split() if part.strip()]


# ---------------------------------------------------------------------------
# Provider settings
# ---------------------------------------------------------------------------

_SECRET_FIELDS = {"client_secret", "webhook_secret"}


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and endpoints for one external provider."""

    name: str
    client_id: str = ""
    client_secret: str = ""
    webhook_secret: str = ""
    redirect_uri: str = ""
    api_base_url: str = ""
    authorize_url: str = ""
    token_url: str = ""
    revoke_url: str | None = None
    scopes: list[str] = field(default_factory=list)
    token_request_format: str = "form"  # form | json
    use_pkce: bool = False

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.client_id and self.token_url and self.authorize_url)

    def __repr__(self) -> str:
        parts = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _SECRET_FIELDS:
                value = redact(value)
            parts.append(f"{f.name}={value!r}")
        return f"ProviderSettings({', '.join(parts)})"


# Public provider endpoints. Only client credentials come from the environment.
_PROVIDER_DEFAULTS: dict[str, dict] = {
    "cal": {
        "api_base_url": "https://api.cal.com/v2",
        "authorize_url": "https://app.cal.com/auth/oauth2/authorize",
        "token_url": "https://api.cal.com/v2/oauth/token",
        "token_request_format": "json",
    },
    "calendly": {
        "api_base_url": "https://api.calendly.com",
        "authorize_url": "https://auth.calendly.com/oauth/authorize",
        "token_url": "https://auth.calendly.com/oauth/token",
        "revoke_url": "https://auth.calendly.com/oauth/revoke",
        "token_request_format": "form",
        "use_pkce": True,
    },
    "stripe": {
        "api_base_url": "https://api.stripe.com/v1",
    },
    "zoom": {
        "api_base_url": "https://api.zoom.us/v2",
        "authorize_url": "https://zoom.us/oauth/authorize",
        "token_url": "https://zoom.us/oauth/token",
        "token_request_format": "form",
    },
}


def provider_settings_from_env(name: str) -> ProviderSettings:
    """Build ``ProviderSettings`` for ``name`` from ``{NAME}_*`` variables.

    Example: CAL_CLIENT_ID, CAL_CLIENT_SECRET, CAL_WEBHOOK_SECRET,
    CAL_REDIRECT_URI, CAL_SCOPES="READ_BOOKING READ_PROFILE".
    """
    prefix = f"{name.upper()}_"
    defaults = _PROVIDER_DEFAULTS.get(name, {})
    return ProviderSettings(
        name=name,
        client_id=os.getenv(f"{prefix}CLIENT_ID", ""),
        client_secret=os.getenv(f"{prefix}CLIENT_SECRET", ""),
        webhook_secret=os.getenv(f"{prefix}WEBHOOK_SECRET", ""),
        redirect_uri=os.getenv(f"{prefix}REDIRECT_URI", ""),
        api_base_url=os.getenv(f"{prefix}API_BASE_URL", defaults.get("api_base_url", "")),
        authorize_url=os.getenv(f"{prefix}AUTHORIZE_URL", defaults.get("authorize_url", "")),
        token_url=os.getenv(f"{prefix}TOKEN_URL", defaults.get("token_url", "")),
        revoke_url=os.getenv(f"{prefix}REVOKE_URL", defaults.get("revoke_url")),
        scopes=_env_list(f"{prefix}SCOPES"),
        token_request_format=defaults.get("token_request_format", "form"),
        use_pkce=defaults.get("use_pkce", False),
    )


# ---------------------------------------------------------------------------
# Resilience settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResilienceSettings:
    """Circuit breaker, retry and timeout defaults shared by all providers."""

    failure_threshold: int = 3
    reset_timeout_ms: int = 60 * 60 * 1000  # 1 hour
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    http_timeout_seconds: float = 15.0
    refresh_margin_seconds: int = 300
    processing_lease_seconds: int = 30

    @classmethod
    def from_env(cls, prefix: str = "RESILIENCE_") -> "ResilienceSettings":
        """Example: RESILIENCE_FAILURE_THRESHOLD=5"""
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            overrides[f.name] = float(raw) if f.type == "float" else int(raw)
        return cls(**overrides)


# ---------------------------------------------------------------------------
# Application settings
# ---------------------------------------------------------------------------

PROVIDER_NAMES = ("cal", "calendly", "stripe", "zoom")


@dataclass(frozen=True)
class AppSettings:
    """Top-level settings assembled once at startup."""

    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    state_secret: str = ""
    state_ttl_seconds: int = 600
    cron_secret: str = ""
    frontend_url: str = "http://localhost:3000"
    storage_backend: str = "memory"  # memory | sql
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    def provider(self, name: str) -> ProviderSettings:
        try:
            return self.providers[name]
        except KeyError:
            raise KeyError(f"Unknown provider: {name}") from None

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            providers={name: provider_settings_from_env(name) for name in PROVIDER_NAMES},
            resilience=ResilienceSettings.from_env(),
            state_secret=os.getenv("OAUTH_STATE_SECRET", ""),
            state_ttl_seconds=int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600")),
            cron_secret=os.getenv("CRON_SECRET", ""),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory"),
            cors_origins=os.getenv(
                "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
            ).split(","),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def __repr__(self) -> str:
        return (
            f"AppSettings(providers={list(self.providers)}, "
            f"storage_backend={self.storage_backend!r}, "
            f"state_secret={redact(self.state_secret)!r}, "
            f"cron_secret={redact(self.cron_secret)!r})"
        )
