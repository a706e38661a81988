"""FastAPI application entry point for Auto PR Bot.

This module provides the HTTP surface of the bot. It accepts change
requests, serves progress records and exposes health and Prometheus
metrics endpoints. In the server deployment the pipeline runs as
background asyncio tasks in the same process.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from src.autopr.config import AutoPRSettings, get_settings
from src.autopr.events.metrics import generate_metrics_output
from src.autopr.intake.models import BridgeResponse
from src.autopr.services import ServiceContainer, build_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return ""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: AutoPRSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Auto PR Bot configuration:")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(settings.github_token)}")
    logger.info(f"  OpenAI API Key: {_redact_secret(settings.openai_api_key)}")
    logger.info(f"  LLM Model: {settings.llm_model}")
    logger.info(f"  LLM Base URL: {settings.llm_base_url or 'default'}")
    logger.info(f"  Status Table: {settings.status_table_name}")
    logger.info(f"  Dispatch Mode: {settings.dispatch_mode.value}")
    logger.info(f"  Max Concurrent Runs: {settings.max_concurrent_runs}")
    logger.info(f"  Rate Limit Per Hour: {settings.rate_limit_per_hour}")
    logger.info(f"  Workspace Base Path: {settings.workspace_base_path}")
    logger.info(f"  Workspace Retention Hours: {settings.workspace_retention_hours}")
    logger.info(f"  Host: {settings.server_host}")
    logger.info(f"  Port: {settings.server_port}")


def _to_response(result: BridgeResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


def _client_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services (for testing). When omitted, settings
            are loaded from the environment at startup and the services
            built from them are closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Auto PR Bot starting up...")

        owned = services is None
        if owned:
            settings = get_settings()
            _log_configuration(settings)
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        logger.info("Auto PR Bot started successfully")

        yield

        logger.info("Auto PR Bot shutting down...")
        if owned:
            await app.state.services.aclose()
        logger.info("Auto PR Bot shutdown complete")

    app = FastAPI(
        title="Auto PR Bot",
        description="Turns natural-language change requests into pull requests",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        registry = request.app.state.services.metrics_registry
        return Response(
            content=generate_metrics_output(registry),
            media_type=PROMETHEUS_CONTENT_TYPE,
        )

    @app.post("/process")
    async def process(request: Request):
        """Accept a change request and start processing it in the background.

        Returns 202 with the request identifier. Progress is read from
        GET /status/{request_id}.
        """
        raw = await request.body()
        try:
            payload = json.loads(raw or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return JSONResponse(status_code=400, content={"error": f"Invalid JSON: {e}"})

        bridge = request.app.state.services.bridge
        result = await bridge.accept(payload, _client_address(request))
        return _to_response(result)

    @app.get("/status/{request_id}")
    async def status(request_id: str, request: Request):
        """Return the latest progress record for a request."""
        bridge = request.app.state.services.bridge
        return _to_response(await bridge.status(request_id))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.autopr.main:app",
        host=dev_settings.server_host,
        port=dev_settings.server_port,
    )
