"""Sync orchestrator: when to pull from Strava, and what to do with the result.

Triggers:
    manual     — ``request_manual_sync()`` from a UI control
    periodic   — a repeating timer (60 minutes by default)
    startup    — once, a few seconds after ``start()``
    focus      — ``notify_focus()`` when the user comes back to the app

Periodic, startup and focus runs are *automatic*: they only fire if enough
time has passed since the durably stored ``last_sync_at``, so a restart or a
recent manual sync does not cause an immediate remote call.  Automatic
failures are logged; manual ones also produce exactly one user notice.

Manual and automatic runs have independent in-flight flags: an automatic
tick never blocks a manual trigger (and vice versa), but a mode never
re-enters itself.  There is no retry inside a run; the next tick is the
retry.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from src.strava.admission import AdmissionController
from src.strava.base import (
    RemoteSyncSource,
    SyncReport,
    SyncStatus,
    parse_timestamp,
    utc_now,
)
from src.strava.config_loader import CostConfig, SyncConfig, get_sync_config
from src.strava.errors import AdmissionDenied, RateLimitExceeded, classify_error
from src.strava.events import (
    EventChannel,
    SyncCompleted,
    SyncFailed,
    SyncProgress,
    SyncStarted,
    SyncTopic,
)
from src.strava.stats_cache import AggregateStatsCache
from src.strava.storage import LAST_SYNC_KEY, KeyValueStore

logger = logging.getLogger("stride.sync.orchestrator")

CostEstimator = Callable[[int], int]


def estimate_request_cost(
    activities_synced: int,
    per_activity: int = 2,
    ceiling: int = 50,
    baseline: int = 10,
) -> int:
    """Approximate the Strava calls spent by one sync run.

    Not a measured value: ``per_activity`` calls per imported activity,
    capped at ``ceiling``, or ``baseline`` when nothing was imported (the
    list calls still happened).
    """
    if activities_synced <= 0:
        return baseline
    return min(activities_synced * per_activity, ceiling)


def cost_estimator_from_config(config: CostConfig) -> CostEstimator:
    return functools.partial(
        estimate_request_cost,
        per_activity=config.per_activity,
        ceiling=config.ceiling,
        baseline=config.baseline,
    )


# ---------------------------------------------------------------------------
# User notices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notice:
    level: str  # 'success' | 'error'
    message: str
    created_at: datetime = field(default_factory=utc_now)


class Notifier(ABC):
    """Delivers user-visible notices (toasts)."""

    @abstractmethod
    def success(self, message: str) -> None:
        ...

    @abstractmethod
    def error(self, message: str) -> None:
        ...


class NoticeBoard(Notifier):
    """Keeps the most recent notices for the UI to poll."""

    def __init__(self, maxlen: int = 20) -> None:
        self._notices: deque[Notice] = deque(maxlen=maxlen)

    def success(self, message: str) -> None:
        logger.info("Notice: %s", message)
        self._notices.append(Notice("success", message))

    def error(self, message: str) -> None:
        logger.info("Error notice: %s", message)
        self._notices.append(Notice("error", message))

    def recent(self) -> list[Notice]:
        """Newest first."""
        return list(reversed(self._notices))

    def clear(self) -> None:
        self._notices.clear()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncMode(str, enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


@dataclass
class SyncRunState:
    """Process-session sync state.

    Attributes:
        in_flight:        Per-mode running flags (not persisted).
        last_sync_at:     Last successful sync (mirrored to durable storage).
        progress_message: Current step of the running sync, if any.
    """

    in_flight: dict[SyncMode, bool] = field(
        default_factory=lambda: {SyncMode.MANUAL: False, SyncMode.AUTOMATIC: False}
    )
    last_sync_at: datetime | None = None
    progress_message: str | None = None

    @property
    def is_syncing(self) -> bool:
        return any(self.in_flight.values())


class SyncOrchestrator:
    """Control loop around the remote sync operation.

    Usage::

        orchestrator = SyncOrchestrator(remote, admission, stats_cache, channel, store)
        await orchestrator.load()
        orchestrator.start()                       # startup + periodic syncs
        report = await orchestrator.request_manual_sync()
        await orchestrator.stop()
    """

    def __init__(
        self,
        remote: RemoteSyncSource,
        admission: AdmissionController,
        stats_cache: AggregateStatsCache,
        events: EventChannel,
        store: KeyValueStore,
        notifier: Notifier | None = None,
        config: SyncConfig | None = None,
        cost_estimator: CostEstimator | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._remote = remote
        self._admission = admission
        self._stats = stats_cache
        self._events = events
        self._store = store
        self._notifier = notifier or NoticeBoard()
        self._config = config or get_sync_config()
        self._estimate_cost = cost_estimator or cost_estimator_from_config(self._config.cost)
        self._clock = clock
        self._state = SyncRunState()
        self._schedule_task: asyncio.Task | None = None
        self._focus_task: asyncio.Task | None = None

    @property
    def state(self) -> SyncRunState:
        return self._state

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def running(self) -> bool:
        """True while the startup/periodic schedule is active."""
        return self._schedule_task is not None and not self._schedule_task.done()

    # ------------------------------------------------------------------
    # Durable last-sync timestamp
    # ------------------------------------------------------------------

    async def load(self) -> datetime | None:
        """Restore ``last_sync_at`` from durable storage."""
        self._state.last_sync_at = await self._read_last_sync()
        logger.info("Last Strava sync: %s", self._state.last_sync_at or "never")
        return self._state.last_sync_at

    async def _read_last_sync(self) -> datetime | None:
        stored = parse_timestamp(await self._store.get(LAST_SYNC_KEY))
        in_memory = self._state.last_sync_at
        if stored is None or in_memory is None:
            return stored or in_memory
        return max(stored, in_memory)

    async def _record_last_sync(self, when: datetime) -> None:
        self._state.last_sync_at = when
        await self._store.set(LAST_SYNC_KEY, when.isoformat())

    def _elapsed_since_sync(self, last_sync_at: datetime | None) -> float | None:
        if last_sync_at is None:
            return None
        return (self._clock() - last_sync_at).total_seconds()

    def is_due(self, min_interval_seconds: float, last_sync_at: datetime | None = None) -> bool:
        """Return True if at least ``min_interval_seconds`` passed since the last sync."""
        elapsed = self._elapsed_since_sync(last_sync_at or self._state.last_sync_at)
        return elapsed is None or elapsed >= min_interval_seconds

    # ------------------------------------------------------------------
    # Sync run
    # ------------------------------------------------------------------

    def _progress(self, message: str) -> None:
        self._state.progress_message = message
        self._events.publish(SyncTopic.PROGRESS, SyncProgress(message))

    async def request_manual_sync(self) -> SyncReport:
        """Entry point for UI controls."""
        return await self.perform_sync(automatic=False)

    async def perform_sync(self, automatic: bool) -> SyncReport:
        """Run one sync in the given mode.

        Args:
            automatic: True for timer/startup/focus runs, False for manual.

        Returns:
            SyncReport describing the outcome.  Never raises for remote
            failures; they are classified, published and reported.
        """
        mode = SyncMode.AUTOMATIC if automatic else SyncMode.MANUAL
        if self._state.in_flight[mode]:
            logger.debug("%s sync already in flight, ignoring trigger", mode.value)
            return SyncReport(status=SyncStatus.SKIPPED, automatic=automatic)

        self._state.in_flight[mode] = True
        try:
            if not await self._admission.admit():
                denied = AdmissionDenied()
                if automatic:
                    logger.info("Automatic sync skipped: local Strava quota exhausted")
                else:
                    logger.warning("Manual sync refused: local Strava quota exhausted")
                    self._notifier.error(denied.user_message)
                return SyncReport(
                    status=SyncStatus.DENIED,
                    automatic=automatic,
                    error=denied.user_message,
                    error_kind=type(denied).__name__,
                )
            return await self._run(automatic)
        finally:
            self._state.in_flight[mode] = False
            if not self._state.is_syncing:
                self._state.progress_message = None

    async def _run(self, automatic: bool) -> SyncReport:
        logger.info("Starting %s sync", "automatic" if automatic else "manual")
        self._state.progress_message = "Initializing"
        self._events.publish(SyncTopic.START, SyncStarted(automatic=automatic))

        try:
            self._progress("Syncing activities")
            result = await self._remote.sync_activities()

            await self._admission.record_usage(self._estimate_cost(result.activities_synced))

            stats = None
            if result.stats is not None:
                self._progress("Updating stats cache")
                stats = await self._stats.merge_and_persist(result.stats)

            await self._record_last_sync(self._clock())
        except Exception as exc:
            error = classify_error(exc)
            kind = type(error).__name__
            if isinstance(error, RateLimitExceeded):
                try:
                    await self._admission.record_usage(self._config.cost.rate_limit_penalty)
                except Exception as penalty_exc:
                    logger.error("Could not record rate-limit penalty: %s", penalty_exc)
            if automatic:
                logger.warning("Automatic sync failed (%s): %s", kind, error)
            else:
                logger.error("Manual sync failed (%s): %s", kind, error)
                self._notifier.error(error.user_message)
            self._events.publish(
                SyncTopic.ERROR,
                SyncFailed(error=error.user_message, kind=kind, automatic=automatic),
            )
            return SyncReport(
                status=SyncStatus.ERROR,
                automatic=automatic,
                error=error.user_message,
                error_kind=kind,
            )

        if automatic:
            logger.info("Automatic sync complete - %d activities", result.activities_synced)
        else:
            logger.info("Manual sync complete - %d activities", result.activities_synced)
            self._notifier.success(f"{result.activities_synced} activities synced")

        self._events.publish(
            SyncTopic.COMPLETE,
            SyncCompleted(
                activities_synced=result.activities_synced,
                stats=stats,
                automatic=automatic,
            ),
        )
        return SyncReport(
            status=SyncStatus.SUCCESS,
            automatic=automatic,
            activities_synced=result.activities_synced,
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def run_if_due(self, min_interval_seconds: float | None = None) -> SyncReport | None:
        """Automatic sync guarded by the durable ``last_sync_at``.

        Returns:
            The report, or None if the minimum interval has not elapsed.
        """
        interval = (
            min_interval_seconds
            if min_interval_seconds is not None
            else self._config.sync.interval_seconds
        )
        last_sync_at = await self._read_last_sync()
        if not self.is_due(interval, last_sync_at):
            logger.debug(
                "Automatic sync not due (%.0fs since last sync, need %.0fs)",
                self._elapsed_since_sync(last_sync_at) or 0.0,
                interval,
            )
            return None
        return await self.perform_sync(automatic=True)

    def start(self) -> None:
        """Begin the startup sync and the periodic timer."""
        if self.running:
            return
        self._schedule_task = asyncio.ensure_future(self._schedule())
        logger.info(
            "Sync scheduler started (startup in %.0fs, every %.0f min)",
            self._config.sync.startup_delay_seconds,
            self._config.sync.interval_minutes,
        )

    async def _schedule(self) -> None:
        await asyncio.sleep(self._config.sync.startup_delay_seconds)
        await self._tick("startup")
        while True:
            await asyncio.sleep(self._config.sync.interval_seconds)
            await self._tick("periodic")

    async def _tick(self, reason: str, min_interval_seconds: float | None = None) -> None:
        try:
            report = await self.run_if_due(min_interval_seconds)
        except Exception as exc:
            # storage failures must not kill the timer
            logger.error("Scheduled %s sync check failed: %s", reason, exc)
            return
        if report is not None:
            logger.debug("Scheduled %s sync finished: %s", reason, report.status.value)

    def notify_focus(self) -> bool:
        """The user came back to the app; maybe sync shortly.

        Returns:
            True if a delayed automatic sync was scheduled.
        """
        if self._focus_task is not None and not self._focus_task.done():
            return False
        if not self.is_due(self._config.sync.focus_min_interval_seconds):
            return False
        logger.info("Sync on focus return scheduled")
        self._focus_task = asyncio.ensure_future(self._focus_sync())
        return True

    async def _focus_sync(self) -> None:
        await asyncio.sleep(self._config.sync.focus_delay_seconds)
        await self._tick("focus", self._config.sync.focus_min_interval_seconds)

    async def wait_focus_sync(self) -> None:
        if self._focus_task is not None:
            await asyncio.gather(self._focus_task, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel the timers, including a scheduled sync that is mid-run."""
        tasks = [t for t in (self._schedule_task, self._focus_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._schedule_task = None
        self._focus_task = None
        logger.info("Sync scheduler stopped")
