"""
FastAPI application factory.

``create_app()`` assembles the application with CORS, error handlers,
the speech relay routes, and the health endpoint. The module-level ``app``
instance allows ``uvicorn voicerelay.api.app:app --reload``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voicerelay.api.middleware.error_handler import register_error_handlers
from voicerelay.api.routes import speech
from voicerelay.core.config import Settings, get_settings
from voicerelay.core.models import HealthResponse
from voicerelay.services.relay import WebhookRelay, create_relay

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, relay: WebhookRelay | None = None) -> FastAPI:
    """Build and return a fully configured FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings).
        relay: Pre-built relay, mainly for tests; built from settings otherwise.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.relay.aclose()

    app = FastAPI(
        title="VoiceRelay",
        description="Voice assistant relay: forwards recorded speech to an "
        "automation webhook and returns the assistant's reply.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.relay = relay or create_relay(settings)
    logger.info(
        "Relay configured: url=%s mock=%s auto_fallback=%s",
        app.state.relay.webhook_url,
        app.state.relay.config.mock,
        app.state.relay.config.auto_fallback,
    )

    # -- CORS --
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error handlers --
    register_error_handlers(app)

    # -- Health check --
    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health() -> HealthResponse:
        return HealthResponse(timestamp=datetime.now(UTC))

    # -- Relay routes --
    app.include_router(speech.router)

    return app


app = create_app()
