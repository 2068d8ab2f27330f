"""Pydantic response models for the sync endpoints."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from src.models.base import StrideBase
from src.strava.admission import UsageLevel
from src.strava.base import AggregateStats, SyncReport


class NoticeLevel(str, Enum):
    success = "success"
    error = "error"


# ---------- Stats ----------

class ActivitySummaryRead(StrideBase):
    name: str
    distance: float
    date: str


class MonthlyStatsRead(StrideBase):
    distance: float = 0.0
    activity_count: int = 0
    duration: float = 0.0
    longest_activity: ActivitySummaryRead | None = None


class YearlyStatsRead(StrideBase):
    distance: float = 0.0
    activity_count: int = 0


class StatsRead(StrideBase):
    monthly: MonthlyStatsRead = Field(default_factory=MonthlyStatsRead)
    yearly: YearlyStatsRead = Field(default_factory=YearlyStatsRead)
    latest: ActivitySummaryRead | None = None

    @classmethod
    def from_stats(cls, stats: AggregateStats | None) -> "StatsRead | None":
        return cls.model_validate(stats) if stats is not None else None


# ---------- Sync ----------

class SyncReportRead(StrideBase):
    status: str
    automatic: bool
    activities_synced: int = 0
    stats: StatsRead | None = None
    error: str | None = None
    error_kind: str | None = None
    finished_at: datetime

    @classmethod
    def from_report(cls, report: SyncReport) -> "SyncReportRead":
        return cls(
            status=report.status.value,
            automatic=report.automatic,
            activities_synced=report.activities_synced,
            stats=StatsRead.from_stats(report.stats),
            error=report.error,
            error_kind=report.error_kind,
            finished_at=report.finished_at,
        )


class SyncStatusRead(StrideBase):
    is_syncing: bool
    manual_in_flight: bool
    automatic_in_flight: bool
    progress_message: str | None = None
    last_sync_at: datetime | None = None
    scheduler_running: bool


class FocusRead(StrideBase):
    scheduled: bool


class RateLimitRead(StrideBase):
    requests_used: int
    daily_limit: int
    safety_factor: float
    reset_at: datetime | None = None
    can_admit: bool
    remaining: int
    usage_percentage: float
    level: UsageLevel


class NoticeRead(StrideBase):
    level: NoticeLevel
    message: str
    created_at: datetime
