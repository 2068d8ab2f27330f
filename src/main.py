"""Stride API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import Settings, get_settings
from src.models.base import ErrorDetail
from src.routers import activities, health, sync
from src.services.runtime import SyncRuntime, build_runtime
from src.strava.errors import (
    AdmissionDenied,
    AuthError,
    EntityNotFound,
    RateLimitExceeded,
    StravaSyncError,
)

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("stride")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Stride API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    runtime: SyncRuntime | None = getattr(app.state, "runtime", None)
    owned = runtime is None
    if owned:
        runtime = await build_runtime(settings)
        app.state.runtime = runtime
    await runtime.start()
    yield
    await runtime.stop()
    if owned:
        app.state.runtime = None
    logger.info("Stride API shut down")


# ---------- Error mapping ----------

_STATUS_BY_ERROR: dict[type[StravaSyncError], int] = {
    AdmissionDenied: 429,
    RateLimitExceeded: 429,
    AuthError: 401,
    EntityNotFound: 404,
}


async def sync_error_handler(request: Request, exc: StravaSyncError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        502,
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(detail=exc.user_message, kind=type(exc).__name__).model_dump(),
    )


# ---------- App factory ----------

def create_app(settings: Settings | None = None, runtime: SyncRuntime | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Overrides ``get_settings()``.
        runtime:  Pre-built runtime (tests).  The lifespan starts and stops
                  it but does not build its own.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Stride API",
        description=(
            "Strava sync service: quota-aware scheduled and manual syncs, "
            "monotonic stats cache and two-stage activity detail."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.add_exception_handler(StravaSyncError, sync_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(activities.router, prefix=v1_prefix)

    return app


app = create_app()
