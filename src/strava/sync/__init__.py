"""Sync control loop.

Modules:
    orchestrator — SyncOrchestrator, cost estimator, user notices
"""

from src.strava.sync.orchestrator import (
    NoticeBoard,
    Notifier,
    SyncMode,
    SyncOrchestrator,
    SyncRunState,
    estimate_request_cost,
)

__all__ = [
    "SyncOrchestrator",
    "SyncMode",
    "SyncRunState",
    "Notifier",
    "NoticeBoard",
    "estimate_request_cost",
]
