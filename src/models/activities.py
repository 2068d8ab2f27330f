"""Pydantic response models for activity detail."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from src.models.base import StrideBase


class ActivityDetailRead(StrideBase):
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
    best_efforts: list[dict[str, Any]] = Field(default_factory=list)
    splits: list[dict[str, Any]] = Field(default_factory=list)
    heart_rate_stream: list[dict[str, Any]] = Field(default_factory=list)
    enriched: bool = False


class PrefetchRead(StrideBase):
    activity_id: int
    scheduled: bool
