"""Aggregate stats cache with monotonic merging.

Successive syncs can cover different, possibly narrower, windows of
activities.  Overwriting the stored rollup with each sync's result would let
a partial sync erase a maximum observed earlier, so every incoming rollup is
merged field by field:

    counters and sums      → max(existing, incoming)
    longest_activity       → record with the larger distance
    latest                 → record with the later date

Ties on the ordering key fall back to the remaining fields so the merge is
commutative and idempotent: the same inputs in any order, any number of
times, give the same stored rollup.
"""

from __future__ import annotations

import asyncio
import json
import logging

from src.strava.base import ActivitySummary, AggregateStats, MonthlyStats, YearlyStats
from src.strava.storage import STATS_CACHE_KEY, KeyValueStore

logger = logging.getLogger("stride.stats_cache")


def _longest_key(record: ActivitySummary) -> tuple:
    return (record.distance, record.started_at, record.name)


def _latest_key(record: ActivitySummary) -> tuple:
    return (record.started_at, record.distance, record.name)


def _pick(
    existing: ActivitySummary | None,
    incoming: ActivitySummary | None,
    key,
) -> ActivitySummary | None:
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return max(existing, incoming, key=key)


def merge_stats(existing: AggregateStats | None, incoming: AggregateStats) -> AggregateStats:
    """Merge two rollups without regressing any observed value.

    Pure function, no I/O.

    Args:
        existing: Currently stored rollup, or None if the cache is empty.
        incoming: Rollup returned by the latest sync.

    Returns:
        The merged rollup.  ``incoming`` verbatim when ``existing`` is None.
    """
    if existing is None:
        return incoming

    monthly = MonthlyStats(
        distance=max(existing.monthly.distance, incoming.monthly.distance),
        activity_count=max(existing.monthly.activity_count, incoming.monthly.activity_count),
        duration=max(existing.monthly.duration, incoming.monthly.duration),
        longest_activity=_pick(
            existing.monthly.longest_activity,
            incoming.monthly.longest_activity,
            _longest_key,
        ),
    )
    yearly = YearlyStats(
        distance=max(existing.yearly.distance, incoming.yearly.distance),
        activity_count=max(existing.yearly.activity_count, incoming.yearly.activity_count),
    )
    return AggregateStats(
        monthly=monthly,
        yearly=yearly,
        latest=_pick(existing.latest, incoming.latest, _latest_key),
    )


class AggregateStatsCache:
    """Durable rollup of the user's Strava statistics.

    The orchestrator is the only writer.  Readers tolerate stale values
    between refreshes.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        # serializes read-merge-write across concurrent sync completions
        self._lock = asyncio.Lock()

    async def read(self) -> AggregateStats | None:
        """Return the stored rollup, or None if absent or unreadable."""
        raw = await self._store.get(STATS_CACHE_KEY)
        if not raw:
            return None
        try:
            return AggregateStats.from_json(json.loads(raw))
        except (json.JSONDecodeError, AttributeError, TypeError) as exc:
            logger.error("Error loading cached stats: %s", exc)
            return None

    async def merge_and_persist(self, incoming: AggregateStats) -> AggregateStats:
        """Merge ``incoming`` into the stored rollup and write the result.

        Args:
            incoming: Rollup from a sync.

        Returns:
            The merged rollup as persisted.
        """
        async with self._lock:
            existing = await self.read()
            merged = merge_stats(existing, incoming)
            await self._store.set(STATS_CACHE_KEY, json.dumps(merged.to_json()))
        if existing is None:
            logger.info("Stats cache initialized")
        elif merged != existing:
            logger.info(
                "Stats cache updated: monthly %.0fm/%d, yearly %.0fm/%d",
                merged.monthly.distance,
                merged.monthly.activity_count,
                merged.yearly.distance,
                merged.yearly.activity_count,
            )
        else:
            logger.debug("Stats cache unchanged by merge")
        return merged

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(STATS_CACHE_KEY)
        logger.info("Stats cache cleared")
