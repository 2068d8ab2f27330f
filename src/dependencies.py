"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.services.runtime import ActivityDetailCache, SyncRuntime
from src.strava.admission import AdmissionController
from src.strava.sync.orchestrator import NoticeBoard, SyncOrchestrator


def get_runtime(request: Request) -> SyncRuntime:
    """Return the runtime built by the application lifespan."""
    runtime: SyncRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Sync runtime not started")
    return runtime


Runtime = Annotated[SyncRuntime, Depends(get_runtime)]


def get_orchestrator(runtime: Runtime) -> SyncOrchestrator:
    return runtime.orchestrator


def get_admission(runtime: Runtime) -> AdmissionController:
    return runtime.admission


def get_detail_cache(runtime: Runtime) -> ActivityDetailCache:
    return runtime.detail_cache


def get_notices(runtime: Runtime) -> NoticeBoard:
    return runtime.notices


# Annotated shortcuts for route signatures
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Admission = Annotated[AdmissionController, Depends(get_admission)]
DetailCache = Annotated[ActivityDetailCache, Depends(get_detail_cache)]
Notices = Annotated[NoticeBoard, Depends(get_notices)]
