"""Admission control against the Strava daily request quota.

Tracks how many Strava calls this client has spent today and decides
whether another sync may be issued.  Only ``safety_factor`` of the daily
limit is admitted (90% by default): the remaining headroom covers calls made
by code paths that do not go through this controller, so the hard external
limit is never hit silently.

The counter resets at local midnight.  State is persisted through the
key-value store under ``strava_rate_limit`` so a restart does not hand out a
fresh quota.
"""

from __future__ import annotations

import enum
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.strava.base import parse_timestamp, utc_now
from src.strava.config_loader import AdmissionConfig, get_sync_config
from src.strava.storage import RATE_LIMIT_KEY, KeyValueStore

logger = logging.getLogger("stride.admission")


def resolve_zone(name: str | None) -> tzinfo | None:
    """Look up an IANA zone name; None (the system zone) if unset or unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'. Falling back to the system zone.", name)
        return None


def next_local_midnight(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Return the first local midnight strictly after ``now``.

    The UTC offset is taken at midnight itself, so a DST switch between
    ``now`` and the boundary moves the boundary with it.

    Args:
        now: Aware datetime.
        tz:  Zone defining "local"; the system zone when None.

    Returns:
        Aware datetime in the zone of ``now``.
    """
    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    if tz is None:
        midnight = datetime.combine(tomorrow, time.min).astimezone()
    else:
        midnight = datetime.combine(tomorrow, time.min, tzinfo=tz)
    return midnight.astimezone(now.tzinfo)


class UsageLevel(str, enum.Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AdmissionState:
    """Persisted quota accounting.

    Attributes:
        requests_used: Calls spent since the last reset.
        daily_limit:   Hard external limit.
        safety_factor: Fraction of ``daily_limit`` that is admitted.
        reset_at:      Next reset boundary (UTC), None before first use.
    """

    requests_used: int = 0
    daily_limit: int = 2000
    safety_factor: float = 0.9
    reset_at: datetime | None = None

    @property
    def threshold(self) -> float:
        return self.daily_limit * self.safety_factor

    @property
    def can_admit(self) -> bool:
        return self.requests_used < self.threshold

    def to_json(self) -> dict:
        return {
            "requestsUsed": self.requests_used,
            "dailyLimit": self.daily_limit,
            "resetAt": self.reset_at.isoformat() if self.reset_at else None,
        }

    @classmethod
    def from_json(cls, data: dict, safety_factor: float) -> "AdmissionState":
        return cls(
            requests_used=max(0, int(data.get("requestsUsed", 0))),
            daily_limit=int(data.get("dailyLimit", 2000)),
            safety_factor=safety_factor,
            reset_at=parse_timestamp(data.get("resetAt")),
        )


class AdmissionController:
    """Gate Strava calls on the local daily quota.

    Usage::

        controller = AdmissionController(store)
        await controller.load()
        if await controller.admit():
            result = await remote.sync_activities()
            await controller.record_usage(estimate_request_cost(result.activities_synced))

    ``can_admit()``, ``remaining()`` and ``usage_percentage()`` are synchronous
    reads of the in-memory state (pending resets are applied first).
    ``admit()`` and ``record_usage()`` also persist.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: AdmissionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_sync_config().admission
        self._clock = clock
        self._tz = tz
        self._state = AdmissionState(
            daily_limit=self._config.daily_limit,
            safety_factor=self._config.safety_factor,
        )

    @property
    def state(self) -> AdmissionState:
        return self._state

    async def load(self) -> AdmissionState:
        """Restore persisted state, creating it on first use."""
        raw = await self._store.get(RATE_LIMIT_KEY)
        if raw:
            try:
                self._state = AdmissionState.from_json(
                    json.loads(raw), self._config.safety_factor
                )
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.error("Error parsing rate limit state, starting fresh: %s", exc)
                raw = None
        if not raw:
            self._state = AdmissionState(
                daily_limit=self._config.daily_limit,
                safety_factor=self._config.safety_factor,
            )
        self._apply_reset()
        await self._persist()
        logger.info(
            "Admission state loaded: %d/%d used, resets at %s",
            self._state.requests_used,
            math.floor(self._state.threshold),
            self._state.reset_at,
        )
        return self._state

    def _apply_reset(self) -> bool:
        """Zero the counter if the reset boundary has passed.

        Returns:
            True if the state changed.
        """
        now = self._clock()
        if self._state.reset_at is None:
            self._state.reset_at = next_local_midnight(now, self._tz)
            return True
        if now >= self._state.reset_at:
            logger.info(
                "Daily quota reset (%d requests used before reset)",
                self._state.requests_used,
            )
            self._state.requests_used = 0
            self._state.reset_at = next_local_midnight(now, self._tz)
            return True
        return False

    async def _persist(self) -> None:
        await self._store.set(RATE_LIMIT_KEY, json.dumps(self._state.to_json()))

    def can_admit(self) -> bool:
        """True iff usage is below ``daily_limit * safety_factor``."""
        self._apply_reset()
        return self._state.can_admit

    async def admit(self) -> bool:
        """``can_admit()`` that also persists a reset it applied."""
        if self._apply_reset():
            await self._persist()
        return self._state.can_admit

    async def record_usage(self, n: int = 1) -> None:
        """Add ``n`` spent requests.

        Raises:
            ValueError: If ``n`` is negative.
        """
        if n < 0:
            raise ValueError(f"usage must be non-negative, got {n}")
        self._apply_reset()
        was_open = self._state.can_admit
        self._state.requests_used += n
        await self._persist()
        if was_open and not self._state.can_admit:
            logger.warning(
                "Strava quota threshold reached: %d/%d, admission closed until %s",
                self._state.requests_used,
                math.floor(self._state.threshold),
                self._state.reset_at,
            )
        else:
            logger.debug("Recorded %d Strava requests (total %d)", n, self._state.requests_used)

    def remaining(self) -> int:
        self._apply_reset()
        return max(0, math.floor(self._state.threshold) - self._state.requests_used)

    def usage_percentage(self) -> float:
        self._apply_reset()
        return self._state.requests_used / self._state.threshold * 100

    def status_level(self) -> UsageLevel:
        """Coarse usage level for status indicators."""
        pct = self.usage_percentage()
        if not self._state.can_admit or pct > self._config.critical_pct:
            return UsageLevel.CRITICAL
        if pct > self._config.warning_pct:
            return UsageLevel.WARNING
        return UsageLevel.OK

    def snapshot(self) -> dict:
        """Current state plus derived values, for the API layer."""
        can_admit = self.can_admit()
        return {
            "requests_used": self._state.requests_used,
            "daily_limit": self._state.daily_limit,
            "safety_factor": self._state.safety_factor,
            "reset_at": self._state.reset_at,
            "can_admit": can_admit,
            "remaining": self.remaining(),
            "usage_percentage": round(self.usage_percentage(), 1),
            "level": self.status_level().value,
        }
