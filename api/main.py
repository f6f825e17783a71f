"""Coaching Integrations API — FastAPI entry point.

Registers middleware, routers, exception handlers and lifecycle hooks.
Every collaborator (settings, stores, per-provider breakers and retry
managers, provider integrations) is built once in ``create_app`` and
kept on ``app.state``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.cron import router as cron_router
from api.middleware import CurrentUserMiddleware
from api.oauth import router as oauth_router
from api.webhooks import router as webhooks_router
from core.config import PROVIDER_NAMES, AppSettings
from core.errors import IntegrationError
from core.integrations.oauth_state import OAuthStateSigner
from core.observability.logging_setup import configure_logging
from core.observability.otel_setup import setup_otel
from core.resilience.registry import ResilienceRegistry
from core.storage import Stores, build_stores
from providers.registry import build_integrations

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    settings: AppSettings = app.state.settings
    configure_logging(settings.log_level)
    if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        setup_otel()
    if settings.storage_backend == "sql":
        from core.database import init_db

        await init_db()

    logger.info("Integrations API started (%r)", settings)
    yield

    if settings.storage_backend == "sql":
        from core.database import close_db

        await close_db()
    logger.info("Integrations API shutting down")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, type(exc).__name__, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        status_code=422,
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[AppSettings] = None,
    *,
    stores: Optional[Stores] = None,
    resilience: Optional[ResilienceRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or AppSettings.from_env()
    stores = stores or build_stores(settings.storage_backend)
    resilience = resilience or ResilienceRegistry.for_providers(PROVIDER_NAMES, settings.resilience)

    app = FastAPI(
        title="Coaching Integrations",
        description="Webhook ingestion, OAuth token lifecycle and resilient provider calls",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.stores = stores
    app.state.resilience = resilience
    app.state.integrations = build_integrations(settings, resilience, stores, http_client)
    app.state.state_signer = (
        OAuthStateSigner(settings.state_secret, settings.state_ttl_seconds)
        if settings.state_secret
        else None
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CurrentUserMiddleware)

    app.add_exception_handler(IntegrationError, integration_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(webhooks_router, tags=["Webhooks"])
    app.include_router(oauth_router, tags=["OAuth"])
    app.include_router(cron_router, tags=["Cron"])

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": VERSION,
            "circuits": app.state.resilience.snapshot(),
        }

    return app


app = create_app()
