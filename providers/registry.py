"""Builds one ``ProviderIntegration`` per configured provider at startup."""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx

from core.config import AppSettings
from core.integrations.adapter_base import ResilientHTTP
from core.integrations.oauth_manager import OAuthTokenManager
from core.integrations.refresh_job import TokenRefreshJob
from core.integrations.webhooks import WebhookDispatcher
from core.resilience.registry import ResilienceRegistry
from core.storage import Stores
from providers import cal, calendly, stripe, zoom
from providers.base import ProviderDefinition, ProviderIntegration

logger = logging.getLogger(__name__)

DEFINITIONS: dict[str, ProviderDefinition] = {
    d.name: d for d in (cal.DEFINITION, calendly.DEFINITION, stripe.DEFINITION, zoom.DEFINITION)
}


def build_integration(
    definition: ProviderDefinition,
    settings: AppSettings,
    resilience: ResilienceRegistry,
    stores: Stores,
    client: httpx.AsyncClient | None = None,
) -> ProviderIntegration:
    name = definition.name
    provider_settings = settings.provider(name)
    tuning = settings.resilience

    http = ResilientHTTP(
        name,
        resilience.breaker(name),
        resilience.retry(name),
        client=client,
        timeout=tuning.http_timeout_seconds,
    )
    dispatcher = WebhookDispatcher(
        name, stores.events, lease=timedelta(seconds=tuning.processing_lease_seconds)
    )
    definition.register_handlers(dispatcher, stores)

    integration = ProviderIntegration(
        definition=definition,
        settings=provider_settings,
        dispatcher=dispatcher,
    )
    if provider_settings.webhook_secret:
        integration.verifier = definition.verifier_factory(provider_settings.webhook_secret)
    else:
        logger.warning("No webhook secret configured for %s; its webhooks will be refused", name)

    if provider_settings.oauth_enabled:
        integration.oauth = OAuthTokenManager(
            provider_settings,
            stores.credentials,
            http,
            refresh_margin=timedelta(seconds=tuning.refresh_margin_seconds),
        )
        integration.refresh_job = TokenRefreshJob(integration.oauth, resilience.breaker(name))
    if definition.adapter_class is not None:
        integration.adapter = definition.adapter_class(provider_settings, http)
    return integration


def build_integrations(
    settings: AppSettings,
    resilience: ResilienceRegistry,
    stores: Stores,
    client: httpx.AsyncClient | None = None,
) -> dict[str, ProviderIntegration]:
    return {
        name: build_integration(definition, settings, resilience, stores, client)
        for name, definition in DEFINITIONS.items()
    }
