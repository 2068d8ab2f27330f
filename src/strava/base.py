"""Base classes and canonical data models for the Stride sync subsystem.

The remote collaborators (the Strava sync edge function and the activity
detail endpoints) are reached through the ``RemoteSyncSource`` and
``DetailSource`` ABCs.  Everything the caches, the orchestrator and the API
layer exchange is expressed with the dataclasses below.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Generic, Hashable, TypeVar

logger = logging.getLogger("stride.base")

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")
E = TypeVar("E")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string to an aware UTC datetime.

    Naive strings are assumed to be UTC.  Returns None if the value is None
    or unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.warning("Could not parse timestamp: %r", value)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _number(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _count(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Aggregate rollup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivitySummary:
    """A single notable activity kept inside the rollup.

    Used for both ``monthly.longest_activity`` (ordered by distance) and
    ``latest`` (ordered by date).

    Attributes:
        name:     Activity title.
        distance: Distance in meters.
        date:     ISO-8601 start date as reported by Strava.
    """

    name: str
    distance: float
    date: str

    @property
    def started_at(self) -> datetime:
        return parse_timestamp(self.date) or datetime.min.replace(tzinfo=timezone.utc)

    def to_json(self) -> dict:
        return {"name": self.name, "distance": self.distance, "date": self.date}

    @classmethod
    def from_json(cls, data: dict | None) -> "ActivitySummary | None":
        if not data:
            return None
        return cls(
            name=str(data.get("name") or ""),
            distance=_number(data.get("distance")),
            date=str(data.get("date") or ""),
        )


@dataclass(frozen=True)
class MonthlyStats:
    """Current-month rollup.

    Attributes:
        distance:         Total distance in meters.
        activity_count:   Number of activities.
        duration:         Total moving time in seconds.
        longest_activity: Longest activity of the month, if any.
    """

    distance: float = 0.0
    activity_count: int = 0
    duration: float = 0.0
    longest_activity: ActivitySummary | None = None

    def to_json(self) -> dict:
        return {
            "distance": self.distance,
            "activityCount": self.activity_count,
            "duration": self.duration,
            "longestActivity": (
                self.longest_activity.to_json() if self.longest_activity else None
            ),
        }

    @classmethod
    def from_json(cls, data: dict | None) -> "MonthlyStats":
        data = data or {}
        return cls(
            distance=_number(data.get("distance")),
            # the sync function historically sent ``activitiesCount``
            activity_count=_count(data.get("activityCount", data.get("activitiesCount"))),
            duration=_number(data.get("duration")),
            longest_activity=ActivitySummary.from_json(data.get("longestActivity")),
        )


@dataclass(frozen=True)
class YearlyStats:
    """Current-year rollup."""

    distance: float = 0.0
    activity_count: int = 0

    def to_json(self) -> dict:
        return {"distance": self.distance, "activityCount": self.activity_count}

    @classmethod
    def from_json(cls, data: dict | None) -> "YearlyStats":
        data = data or {}
        return cls(
            distance=_number(data.get("distance")),
            activity_count=_count(data.get("activityCount", data.get("activitiesCount"))),
        )


@dataclass(frozen=True)
class AggregateStats:
    """Merged rollup statistics returned by a sync and kept in the stats cache.

    Attributes:
        monthly: Current-month totals and longest activity.
        yearly:  Current-year totals.
        latest:  Most recent activity, if any.
    """

    monthly: MonthlyStats = field(default_factory=MonthlyStats)
    yearly: YearlyStats = field(default_factory=YearlyStats)
    latest: ActivitySummary | None = None

    def to_json(self) -> dict:
        return {
            "monthly": self.monthly.to_json(),
            "yearly": self.yearly.to_json(),
            "latest": self.latest.to_json() if self.latest else None,
        }

    @classmethod
    def from_json(cls, data: dict) -> "AggregateStats":
        return cls(
            monthly=MonthlyStats.from_json(data.get("monthly")),
            yearly=YearlyStats.from_json(data.get("yearly")),
            latest=ActivitySummary.from_json(data.get("latest")),
        )


# ---------------------------------------------------------------------------
# Activity detail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityEnrichment:
    """Secondary metrics fetched after the primary activity row.

    Attributes:
        heart_rate_stream: Heart rate samples from the Strava streams API.
        splits:            Per-kilometer splits.
    """

    heart_rate_stream: list[dict] = field(default_factory=list)
    splits: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class ActivityDetail:
    """One Strava activity as shown by the detail view.

    Built from the ``strava_activities`` row plus its best efforts (stage 1).
    Heart rate stream and splits arrive later through ``with_enrichment``.
    Instances are never mutated; enrichment produces a new object.
    """

    id: int
    name: str
    type: str
    distance: float
    moving_time: int
    elapsed_time: int
    start_date: str
    start_date_local: str | None = None
    total_elevation_gain: float | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    suffer_score: float | None = None
    calories: float | None = None
    location_city: str | None = None
    location_country: str | None = None
    map_polyline: str | None = None
    map_summary_polyline: str | None = None
    best_efforts: list[dict] = field(default_factory=list)
    splits: list[dict] = field(default_factory=list)
    heart_rate_stream: list[dict] = field(default_factory=list)
    enriched: bool = False

    @classmethod
    def from_row(cls, row: dict, best_efforts: list[dict] | None = None) -> "ActivityDetail":
        """Build an ActivityDetail from a ``strava_activities`` row."""
        return cls(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            type=str(row.get("type") or "Run"),
            distance=_number(row.get("distance")),
            moving_time=_count(row.get("moving_time")),
            elapsed_time=_count(row.get("elapsed_time")),
            start_date=str(row.get("start_date") or ""),
            start_date_local=row.get("start_date_local"),
            total_elevation_gain=row.get("total_elevation_gain"),
            average_speed=row.get("average_speed"),
            max_speed=row.get("max_speed"),
            average_heartrate=row.get("average_heartrate"),
            max_heartrate=row.get("max_heartrate"),
            suffer_score=row.get("suffer_score"),
            calories=row.get("calories"),
            location_city=row.get("location_city"),
            location_country=row.get("location_country"),
            map_polyline=row.get("map_polyline"),
            map_summary_polyline=row.get("map_summary_polyline"),
            best_efforts=list(best_efforts or []),
        )

    def with_enrichment(self, enrichment: ActivityEnrichment) -> "ActivityDetail":
        """Return a copy carrying the enrichment; stage-1 fields are kept."""
        return replace(
            self,
            heart_rate_stream=list(enrichment.heart_rate_stream),
            splits=list(enrichment.splits or self.splits),
            enriched=True,
        )


# ---------------------------------------------------------------------------
# Cache and sync records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the monotonic time at which it stops being valid."""

    value: T
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class SyncResult:
    """Successful response of the remote sync operation.

    Attributes:
        activities_synced: Number of activities imported by this run.
        stats:             Rollup computed by the remote side, if returned.
    """

    activities_synced: int = 0
    stats: AggregateStats | None = None

    @classmethod
    def from_json(cls, data: dict | None) -> "SyncResult":
        data = data or {}
        stats_raw = data.get("stats")
        return cls(
            activities_synced=_count(data.get("activities_synced")),
            stats=AggregateStats.from_json(stats_raw) if stats_raw else None,
        )


class SyncStatus(str, enum.Enum):
    """Outcome of one ``perform_sync`` call."""

    SUCCESS = "success"
    ERROR = "error"
    DENIED = "denied"  # admission controller refused
    SKIPPED = "skipped"  # same mode already in flight


@dataclass
class SyncReport:
    """What ``perform_sync`` did.

    Attributes:
        status:            Outcome.
        automatic:         True for timer/startup/focus runs.
        activities_synced: Activities imported (success only).
        stats:             Merged rollup after the run (success only).
        error:             User-facing error message.
        error_kind:        Taxonomy class name of the failure.
        finished_at:       UTC completion time.
    """

    status: SyncStatus
    automatic: bool
    activities_synced: int = 0
    stats: AggregateStats | None = None
    error: str | None = None
    error_kind: str | None = None
    finished_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Remote collaborators
# ---------------------------------------------------------------------------


class RemoteSyncSource(ABC):
    """The opaque remote sync operation.

    Implementations pull new activities from Strava into the activity store
    and report how many were imported plus the recomputed rollup.
    """

    @abstractmethod
    async def sync_activities(self) -> SyncResult:
        """Run one remote sync.

        Raises:
            StravaSyncError: Any subclass from ``src.strava.errors``.
        """


class DetailSource(ABC, Generic[K, T, E]):
    """Two-stage fetcher for one entity type.

    Subclasses must implement:
        - fetch_primary()
        - fetch_enrichment()
        - merge()

    ``is_enriched`` may be overridden so cache hits lacking enrichment can
    schedule it in the background.
    """

    @abstractmethod
    async def fetch_primary(self, entity_id: K) -> T:
        """Fetch the required fields.  Failures propagate to the caller."""

    @abstractmethod
    async def fetch_enrichment(self, entity_id: K) -> E | None:
        """Fetch secondary data.  None means nothing to merge."""

    @abstractmethod
    def merge(self, value: T, enrichment: E) -> T:
        """Combine a primary value with its enrichment into a new value."""

    def is_enriched(self, value: T) -> bool:
        return True
