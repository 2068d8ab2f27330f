"""Wiring of the sync subsystem into one explicitly owned runtime.

Every component is a plain instance held by ``SyncRuntime``; nothing is
module-level state.  The FastAPI lifespan builds one runtime, stores it on
``app.state`` and tears it down at shutdown.  Tests build their own with
in-memory collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import Settings, get_settings
from src.services import database
from src.services.supabase import SupabaseClient
from src.strava.adapters import SupabaseActivitySource, SupabaseSyncSource
from src.strava.admission import AdmissionController, resolve_zone
from src.strava.base import ActivityDetail, ActivityEnrichment, DetailSource, RemoteSyncSource
from src.strava.config_loader import SyncConfig, get_sync_config
from src.strava.detail_cache import EntityDetailCache
from src.strava.events import EventChannel
from src.strava.refresh import RefreshCoordinator
from src.strava.stats_cache import AggregateStatsCache
from src.strava.storage import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    PostgresKeyValueStore,
)
from src.strava.sync.orchestrator import NoticeBoard, SyncOrchestrator

logger = logging.getLogger("stride.runtime")

ActivityDetailCache = EntityDetailCache[int, ActivityDetail, ActivityEnrichment]


async def build_store(settings: Settings) -> KeyValueStore:
    """Create the configured durable store.

    Raises:
        ValueError: If ``storage_backend`` is unknown.
    """
    backend = settings.storage_backend.lower()
    if backend == "memory":
        logger.warning("Using in-memory storage: quota and last sync are lost on restart")
        return MemoryKeyValueStore()
    if backend == "file":
        return FileKeyValueStore(settings.storage_path)
    if backend == "postgres":
        await database.init_pool(settings)
        store = PostgresKeyValueStore()
        await store.ensure_schema()
        return store
    raise ValueError(f"Unknown storage backend '{settings.storage_backend}'")


@dataclass
class SyncRuntime:
    """All sync services for one user session."""

    settings: Settings
    config: SyncConfig
    store: KeyValueStore
    events: EventChannel
    admission: AdmissionController
    stats_cache: AggregateStatsCache
    detail_cache: ActivityDetailCache
    notices: NoticeBoard
    orchestrator: SyncOrchestrator
    refresh: RefreshCoordinator
    supabase: SupabaseClient | None = None

    async def start(self, auto_sync: bool | None = None) -> None:
        """Restore durable state and, if enabled, start the sync schedule."""
        await self.admission.load()
        await self.orchestrator.load()
        enabled = self.settings.auto_sync_enabled if auto_sync is None else auto_sync
        if enabled:
            self.orchestrator.start()
        else:
            logger.info("Automatic sync disabled")

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.detail_cache.aclose()
        self.refresh.close()
        self.events.clear()
        if self.supabase is not None:
            await self.supabase.aclose()
        if isinstance(self.store, PostgresKeyValueStore):
            await database.close_pool()
        logger.info("Sync runtime stopped")


async def build_runtime(
    settings: Settings | None = None,
    *,
    config: SyncConfig | None = None,
    store: KeyValueStore | None = None,
    remote: RemoteSyncSource | None = None,
    detail_source: DetailSource[int, ActivityDetail, ActivityEnrichment] | None = None,
) -> SyncRuntime:
    """Assemble a runtime.  Any collaborator may be injected.

    Supabase-backed sources are created only for collaborators not injected.
    """
    s = settings or get_settings()
    cfg = config or get_sync_config(s.sync_config_path)
    kv = store or await build_store(s)

    supabase: SupabaseClient | None = None
    if remote is None or detail_source is None:
        supabase = SupabaseClient.from_settings(s)
    remote = remote or SupabaseSyncSource(supabase)
    detail_source = detail_source or SupabaseActivitySource(supabase, user_id=s.supabase_user_id)

    events = EventChannel()
    admission = AdmissionController(kv, cfg.admission, tz=resolve_zone(s.sync_timezone))
    stats_cache = AggregateStatsCache(kv)
    notices = NoticeBoard()
    orchestrator = SyncOrchestrator(
        remote=remote,
        admission=admission,
        stats_cache=stats_cache,
        events=events,
        store=kv,
        notifier=notices,
        config=cfg,
    )
    return SyncRuntime(
        settings=s,
        config=cfg,
        store=kv,
        events=events,
        admission=admission,
        stats_cache=stats_cache,
        detail_cache=EntityDetailCache(detail_source, ttl_seconds=cfg.detail_ttl_seconds),
        notices=notices,
        orchestrator=orchestrator,
        refresh=RefreshCoordinator(events, debounce_seconds=cfg.debounce_seconds),
        supabase=supabase,
    )
