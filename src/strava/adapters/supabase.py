"""Remote collaborators backed by Supabase.

Sync:
    ``sync-strava-activities`` edge function.  Pulls new activities from
    Strava server-side and returns ``{activities_synced, stats}``.

Activity detail:
    stage 1 — ``strava_activities`` row + ``strava_best_efforts`` rows
    stage 2 — ``get-activity-details`` edge function (heart rate stream, splits)
"""

from __future__ import annotations

import asyncio
import logging

from src.services.supabase import SupabaseClient
from src.strava.base import (
    ActivityDetail,
    ActivityEnrichment,
    DetailSource,
    RemoteSyncSource,
    SyncResult,
)

logger = logging.getLogger("stride.adapters.supabase")

SYNC_FUNCTION = "sync-strava-activities"
DETAILS_FUNCTION = "get-activity-details"


class SupabaseSyncSource(RemoteSyncSource):
    """Invokes the Strava sync edge function."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def sync_activities(self) -> SyncResult:
        data = await self._client.invoke(SYNC_FUNCTION)
        result = SyncResult.from_json(data)
        logger.debug(
            "Sync function returned %d activities (stats=%s)",
            result.activities_synced,
            "yes" if result.stats else "no",
        )
        return result


class SupabaseActivitySource(DetailSource[int, ActivityDetail, ActivityEnrichment]):
    """Two-stage activity detail fetcher.

    Args:
        client:  Supabase client carrying the user's session.
        user_id: Optional owner filter added to row reads (RLS also applies).
    """

    def __init__(self, client: SupabaseClient, user_id: str | None = None) -> None:
        self._client = client
        self._user_id = user_id

    def _filters(self, **extra: object) -> dict:
        filters: dict = dict(extra)
        if self._user_id:
            filters["user_id"] = self._user_id
        return filters

    async def _best_efforts(self, activity_id: int) -> list[dict]:
        try:
            return await self._client.select(
                "strava_best_efforts",
                self._filters(activity_id=activity_id),
                order="distance.asc",
            )
        except Exception as exc:
            logger.error("Error fetching best efforts for %s: %s", activity_id, exc)
            return []

    async def fetch_primary(self, entity_id: int) -> ActivityDetail:
        row, best_efforts = await asyncio.gather(
            self._client.select_one("strava_activities", self._filters(id=entity_id)),
            self._best_efforts(entity_id),
        )
        detail = ActivityDetail.from_row(row, best_efforts)
        logger.debug(
            "Basic activity data fetched for %s (hr=%s, map=%s)",
            entity_id,
            detail.average_heartrate,
            bool(detail.map_polyline or detail.map_summary_polyline),
        )
        return detail

    async def fetch_enrichment(self, entity_id: int) -> ActivityEnrichment | None:
        data = await self._client.invoke(DETAILS_FUNCTION, {"activityId": entity_id})
        if not data.get("success") or not data.get("heart_rate_stream"):
            logger.debug("No heart rate data for activity %s", entity_id)
            return None
        return ActivityEnrichment(
            heart_rate_stream=list(data.get("heart_rate_stream") or []),
            splits=list(data.get("splits") or []),
        )

    def merge(self, value: ActivityDetail, enrichment: ActivityEnrichment) -> ActivityDetail:
        return value.with_enrichment(enrichment)

    def is_enriched(self, value: ActivityDetail) -> bool:
        return value.enriched
