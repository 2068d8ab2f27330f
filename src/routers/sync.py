"""Sync control endpoints: manual trigger, focus signal, quota and stats."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Admission, Notices, Orchestrator, Runtime
from src.models.base import ErrorDetail
from src.models.sync import (
    FocusRead,
    NoticeRead,
    RateLimitRead,
    StatsRead,
    SyncReportRead,
    SyncStatusRead,
)
from src.strava.base import SyncStatus
from src.strava.errors import AdmissionDenied
from src.strava.sync.orchestrator import SyncMode

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("stride.routers.sync")


@router.post(
    "",
    response_model=SyncReportRead,
    responses={429: {"model": ErrorDetail, "description": "Local Strava quota exhausted"}},
)
async def trigger_sync(orchestrator: Orchestrator) -> Any:
    """Run a manual sync and return its report.

    Denied runs are surfaced as HTTP 429.  Remote failures are reported in
    the body with ``status="error"``; a run already in flight yields
    ``status="skipped"``.
    """
    report = await orchestrator.request_manual_sync()
    if report.status is SyncStatus.DENIED:
        raise AdmissionDenied()
    return SyncReportRead.from_report(report)


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(orchestrator: Orchestrator) -> Any:
    state = orchestrator.state
    return SyncStatusRead(
        is_syncing=state.is_syncing,
        manual_in_flight=state.in_flight[SyncMode.MANUAL],
        automatic_in_flight=state.in_flight[SyncMode.AUTOMATIC],
        progress_message=state.progress_message,
        last_sync_at=state.last_sync_at,
        scheduler_running=orchestrator.running,
    )


@router.post("/focus", response_model=FocusRead)
async def focus_returned(orchestrator: Orchestrator) -> Any:
    """Signal that the user came back to the app."""
    return FocusRead(scheduled=orchestrator.notify_focus())


@router.get("/rate-limit", response_model=RateLimitRead)
async def rate_limit(admission: Admission) -> Any:
    return admission.snapshot()


@router.get("/stats", response_model=StatsRead)
async def cached_stats(runtime: Runtime) -> Any:
    """Merged rollup from the local stats cache."""
    stats = await runtime.stats_cache.read()
    if stats is None:
        raise HTTPException(status_code=404, detail="No cached stats yet")
    return StatsRead.from_stats(stats)


@router.delete("/stats", status_code=204)
async def clear_stats(runtime: Runtime) -> None:
    await runtime.stats_cache.clear()
    logger.info("Stats cache cleared via API")


@router.get("/notices", response_model=list[NoticeRead])
async def recent_notices(notices: Notices) -> Any:
    return notices.recent()


@router.delete("/notices", status_code=204)
async def clear_notices(notices: Notices) -> None:
    notices.clear()
