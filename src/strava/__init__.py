"""Stride Strava sync subsystem.

Coordinates periodic and on-demand pulls from the rate-limited Strava API,
merges results into local caches without losing observed data, and tells
dependent views when to refresh.

Subpackages:
    adapters/ — Supabase-backed remote sync and activity detail sources
    sync/     — Sync orchestrator (triggers, reentrancy, notices)

Core modules:
    base          — Data models and remote collaborator ABCs
    admission     — Daily quota admission controller
    stats_cache   — Monotonic aggregate stats cache
    detail_cache  — Per-activity TTL cache with request supersession
    events        — Typed sync lifecycle pub/sub
    refresh       — Debounced, scroll-preserving refresh coordination
    storage       — Durable key-value persistence backends
    config_loader — Load/validate sync_config.yaml
"""

from src.strava.base import (
    ActivityDetail,
    ActivityEnrichment,
    AggregateStats,
    DetailSource,
    RemoteSyncSource,
    SyncReport,
    SyncResult,
    SyncStatus,
)
from src.strava.config_loader import SyncConfig, get_sync_config

__all__ = [
    "ActivityDetail",
    "ActivityEnrichment",
    "AggregateStats",
    "DetailSource",
    "RemoteSyncSource",
    "SyncReport",
    "SyncResult",
    "SyncStatus",
    "SyncConfig",
    "get_sync_config",
]
