# interactbot/transport/http_app.py
"""
HTTP surface for the interaction dispatcher.

Endpoints:
- POST /interactions — signed interaction webhook (the only public endpoint)
- GET  /health       — liveness for the hosting platform
- GET  /metrics      — in-process counters (metrics token or internal network)

The webhook reads the raw body exactly once and hands the bytes, unchanged,
to the dispatcher. The deferred follow-up is started from a Starlette
BackgroundTask, which runs after the acknowledgment has been written.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from interactbot import __version__
from interactbot.bootstrap import build_dispatcher, sync_commands
from interactbot.config import Settings, settings
from interactbot.core.dispatcher import InteractionDispatcher
from interactbot.core.registry import SyncMode
from interactbot.infra.http_client import close_all_sessions
from interactbot.infra.logging_config import get_logger, setup_logging
from interactbot.infra.metrics import get_metrics_collector
from interactbot.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from interactbot.transport.security import require_metrics_auth
from interactbot.transport.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER

logger = get_logger(__name__)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    app_settings: Settings = fastapi_app.state.settings

    logger.info(f"Starting interaction dispatcher: env={app_settings.app_env}")

    dispatcher: InteractionDispatcher | None = getattr(fastapi_app.state, "dispatcher", None)
    if dispatcher is None:
        # ConfigurationError here aborts startup
        dispatcher = build_dispatcher(app_settings)
        fastapi_app.state.dispatcher = dispatcher

    if app_settings.sync_commands_on_startup:
        # RegistrationError propagates: the app must not serve a partial command set
        result = await sync_commands(app_settings, SyncMode.INSTALL, runtime=dispatcher.config)
        logger.info(f"Commands installed before serving: {result.synced}")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await dispatcher.runner.drain(timeout=app_settings.shutdown_drain_seconds)
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# ENDPOINTS
# ============================================================================

async def handle_interaction_request(request: Request) -> JSONResponse:
    """POST /interactions"""
    dispatcher: InteractionDispatcher = request.app.state.dispatcher

    body = await request.body()
    result = await dispatcher.handle(
        body,
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(TIMESTAMP_HEADER),
        request_id=getattr(request.state, "request_id", "unknown"),
    )

    background = BackgroundTask(result.after_send) if result.after_send else None
    return JSONResponse(result.body, status_code=result.status_code, background=background)


def health() -> dict:
    return {"status": "ok", "version": __version__}


def metrics() -> dict:
    """GET /metrics (token or internal network, see require_metrics_auth)"""
    return get_metrics_collector().snapshot()


# ============================================================================
# CREATE APP
# ============================================================================

def create_app(
    app_settings: Settings | None = None,
    dispatcher: InteractionDispatcher | None = None,
) -> FastAPI:
    app_settings = app_settings or settings

    fastapi_app = FastAPI(
        title="interactbot",
        description="Signed interaction webhook dispatcher",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if app_settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if app_settings.is_production else "/openapi.json",
    )
    fastapi_app.state.settings = app_settings
    fastapi_app.state.dispatcher = dispatcher

    # Middleware order: last added runs first
    fastapi_app.add_middleware(ErrorHandlingMiddleware)
    fastapi_app.add_middleware(
        RequestLoggingMiddleware,
        enabled=app_settings.enable_request_logging,
    )
    fastapi_app.add_middleware(RequestIDMiddleware)

    fastapi_app.add_api_route("/interactions", handle_interaction_request, methods=["POST"])
    fastapi_app.add_api_route("/health", health, methods=["GET"])
    fastapi_app.add_api_route(
        "/metrics", metrics, methods=["GET"], dependencies=[Depends(require_metrics_auth)],
    )

    return fastapi_app


setup_logging(
    level=settings.log_level,
    use_json=settings.is_production,
)

app = create_app()
