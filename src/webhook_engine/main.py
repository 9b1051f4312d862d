"""Webhook Engine - FastAPI application.

Thin HTTP adapter around a WebhookEngine: inbound webhook reception
plus the monitoring and dead-letter endpoints.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.logging_config import setup_logging
from .core.settings import EngineSettings
from .webhooks.engine import WebhookEngine
from .webhooks.router import router as webhooks_router


def create_app(
    engine: Optional[WebhookEngine] = None,
    settings: Optional[EngineSettings] = None,
    configure_logging: bool = False,
) -> FastAPI:
    """Build the FastAPI app around an engine.

    Args:
        engine: The engine to serve; built from ``settings`` (or the
            environment) when omitted.
        settings: Settings used to build the engine.
        configure_logging: Run setup_logging() on startup.

    Returns:
        FastAPI: The application. The engine is available as
        ``app.state.webhook_engine`` and runs between startup and shutdown.
    """
    if engine is None:
        engine = WebhookEngine(settings or EngineSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the dispatch loop for the lifetime of the app."""
        if configure_logging:
            setup_logging(engine.settings.log_level)
        await engine.start()
        try:
            yield
        finally:
            # Drain in-flight attempts before shutting down
            await engine.stop()

    app = FastAPI(
        title="Webhook Engine",
        description="Reliable webhook ingestion with retries and a dead-letter queue.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.webhook_engine = engine
    app.include_router(webhooks_router)

    @app.get("/")
    def root() -> dict:
        return {"status": "ok", "message": "Webhook Engine", "version": "0.1.0"}

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint for load balancers."""
        return {"status": engine.get_health_status().status.value}

    return app
