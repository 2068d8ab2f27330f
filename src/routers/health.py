"""Health check endpoint, public and outside the v1 prefix."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("stride.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also probes the durable store backing quota and last-sync state.
    """
    settings = get_settings()
    runtime = getattr(request.app.state, "runtime", None)
    store_ok = False
    if runtime is not None:
        try:
            store_ok = await runtime.store.ping()
        except Exception as exc:
            logger.warning("Health check storage probe failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "storage": settings.storage_backend if store_ok else "unreachable",
        "scheduler": "running" if runtime is not None and runtime.orchestrator.running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
