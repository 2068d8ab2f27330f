"""Shared fixtures and fake remote collaborators for sync subsystem tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.strava.admission import AdmissionController
from src.strava.base import (
    ActivityDetail,
    ActivityEnrichment,
    ActivitySummary,
    AggregateStats,
    DetailSource,
    MonthlyStats,
    RemoteSyncSource,
    SyncResult,
    YearlyStats,
)
from src.strava.config_loader import SyncConfig, load_sync_config
from src.strava.events import EventChannel
from src.strava.stats_cache import AggregateStatsCache
from src.strava.storage import MemoryKeyValueStore
from src.strava.sync.orchestrator import NoticeBoard, SyncOrchestrator

# Noon UTC, well away from the midnight reset
TEST_NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Remote fakes
# ---------------------------------------------------------------------------


class FakeSyncSource(RemoteSyncSource):
    """Returns queued results or raises queued exceptions, in order.

    With ``gate`` set, each call blocks until the event is set.
    """

    def __init__(self, *outcomes: SyncResult | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def sync_activities(self) -> SyncResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else SyncResult()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeActivitySource(DetailSource[int, ActivityDetail, ActivityEnrichment]):
    """In-memory activity source with controllable stage timing.

    ``primary_gates[id]`` / ``enrichment_gates[id]`` hold a fetch until set.
    ``primary_errors`` / ``enrichment_errors`` make the matching stage fail.
    """

    def __init__(self) -> None:
        self.primary_calls: list[int] = []
        self.enrichment_calls: list[int] = []
        self.primary_gates: dict[int, asyncio.Event] = {}
        self.enrichment_gates: dict[int, asyncio.Event] = {}
        self.primary_errors: dict[int, Exception] = {}
        self.enrichment_errors: dict[int, Exception] = {}
        self.names: dict[int, str] = {}

    async def fetch_primary(self, entity_id: int) -> ActivityDetail:
        self.primary_calls.append(entity_id)
        name = self.names.get(entity_id, f"Run {entity_id}")
        gate = self.primary_gates.get(entity_id)
        if gate is not None:
            await gate.wait()
        if entity_id in self.primary_errors:
            raise self.primary_errors[entity_id]
        return make_detail(entity_id, name=name)

    async def fetch_enrichment(self, entity_id: int) -> ActivityEnrichment | None:
        self.enrichment_calls.append(entity_id)
        gate = self.enrichment_gates.get(entity_id)
        if gate is not None:
            await gate.wait()
        if entity_id in self.enrichment_errors:
            raise self.enrichment_errors[entity_id]
        return ActivityEnrichment(
            heart_rate_stream=[{"time": 0, "heartrate": 140}],
            splits=[{"split": 1, "distance": 1000}],
        )

    def merge(self, value: ActivityDetail, enrichment: ActivityEnrichment) -> ActivityDetail:
        return value.with_enrichment(enrichment)

    def is_enriched(self, value: ActivityDetail) -> bool:
        return value.enriched


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_detail(entity_id: int, name: str = "Morning Run") -> ActivityDetail:
    return ActivityDetail.from_row(
        {
            "id": entity_id,
            "name": name,
            "type": "Run",
            "distance": 10000.0,
            "moving_time": 3000,
            "elapsed_time": 3100,
            "start_date": "2026-03-14T07:00:00Z",
            "average_heartrate": 150.0,
        },
        best_efforts=[{"name": "5k", "elapsed_time": 1450}],
    )


def make_stats(
    monthly_distance: float = 50000.0,
    monthly_count: int = 5,
    yearly_distance: float = 300000.0,
    yearly_count: int = 30,
    longest: ActivitySummary | None = None,
    latest: ActivitySummary | None = None,
) -> AggregateStats:
    return AggregateStats(
        monthly=MonthlyStats(
            distance=monthly_distance,
            activity_count=monthly_count,
            duration=monthly_distance / 3,
            longest_activity=longest,
        ),
        yearly=YearlyStats(distance=yearly_distance, activity_count=yearly_count),
        latest=latest,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the bundled sync config."""
    return load_sync_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def admission(
    store: MemoryKeyValueStore, sync_config: SyncConfig, clock: FakeClock
) -> AdmissionController:
    return AdmissionController(store, sync_config.admission, clock=clock, tz=timezone.utc)


@pytest.fixture
def stats_cache(store: MemoryKeyValueStore) -> AggregateStatsCache:
    return AggregateStatsCache(store)


@pytest.fixture
def remote() -> FakeSyncSource:
    return FakeSyncSource()


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def orchestrator(
    remote: FakeSyncSource,
    admission: AdmissionController,
    stats_cache: AggregateStatsCache,
    events: EventChannel,
    store: MemoryKeyValueStore,
    notices: NoticeBoard,
    sync_config: SyncConfig,
    clock: FakeClock,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        remote=remote,
        admission=admission,
        stats_cache=stats_cache,
        events=events,
        store=store,
        notifier=notices,
        config=sync_config,
        clock=clock,
    )


@pytest.fixture
def activity_source() -> FakeActivitySource:
    return FakeActivitySource()
