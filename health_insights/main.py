"""Health Insights service entrypoint."""

from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .app_config import default_sources, resolve_app_config
from .config import get_settings
from .database import init_db
from .middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from .observability import RequestMetricsMiddleware
from .routers import admin, analyze, chat, extract, health, observability, reports
from .services.container import build_services
from .utils.errors import HealthInsightsError
from .utils.logging import mask_secret

settings = get_settings()
logger = logging.getLogger("uvicorn.error")

cors_allow_origins = list(settings.cors_allow_origins) or [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
allow_credentials = "*" not in cors_allow_origins
if not allow_credentials:
    cors_allow_origins = ["*"]


def _announce_api_key() -> None:
    """Log whether a Gemini API key is available without revealing it."""

    api_key = resolve_app_config(default_sources(get_settings())).api_key
    if api_key:
        logger.info("[HealthInsights] Gemini API key loaded: %s", mask_secret(api_key))
    else:
        logger.info(
            "[HealthInsights] Gemini API key not configured; analysis endpoints will fail "
            "until GEMINI_API_KEY or the admin configuration provides one."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database and background services."""

    current = get_settings()
    init_db()
    _announce_api_key()
    services = build_services(current)
    app.state.services = services
    await services.start()
    try:
        yield
    finally:
        await services.stop()


app = FastAPI(title="Health Insights", version=__version__, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(RequestMetricsMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


ROUTERS: Iterable = (
    analyze.router,
    extract.router,
    reports.router,
    chat.router,
    admin.router,
    health.router,
    observability.router,
)

for router in ROUTERS:
    app.include_router(router)


@app.exception_handler(HealthInsightsError)
async def handle_pipeline_error(request: Request, exc: HealthInsightsError) -> JSONResponse:
    """Render pipeline errors with a stable code; details only in development."""

    if exc.status_code >= 500:
        logger.warning(
            "%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message
        )
    content: dict[str, object] = {"success": False, "error": exc.message, "code": exc.code}
    content.update(exc.extra)
    if get_settings().is_development:
        content["detail"] = exc.details or [exc.message]
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers or None
    )


@app.exception_handler(Exception)
async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Ensure unexpected exceptions return a JSON payload."""

    logger.exception(
        "Unhandled exception while processing %s %s", request.method, request.url.path
    )
    content: dict[str, object] = {
        "success": False,
        "error": "Internal Server Error",
        "code": "internal_error",
    }
    if get_settings().is_development:
        content["detail"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


__all__ = ["app"]
