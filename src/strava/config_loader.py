"""Load, validate, and hot-reload the Stride sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk; components built afterwards pick up the new values.

Usage::

    from src.strava.config_loader import get_sync_config

    config = get_sync_config()
    config.admission.threshold      # 1800.0
    config.sync.interval_seconds    # 3600
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("stride.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class AdmissionConfig:
    """Daily quota accounting settings."""

    daily_limit: int
    safety_factor: float
    warning_pct: float = 70.0
    critical_pct: float = 90.0

    @property
    def threshold(self) -> float:
        return self.daily_limit * self.safety_factor


@dataclass
class ScheduleConfig:
    """When automatic syncs fire."""

    interval_minutes: float
    startup_delay_seconds: float
    focus_min_interval_minutes: float
    focus_delay_seconds: float

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @property
    def focus_min_interval_seconds(self) -> float:
        return self.focus_min_interval_minutes * 60


@dataclass
class CostConfig:
    """Request-cost heuristic applied after each sync."""

    per_activity: int
    ceiling: int
    baseline: int
    rate_limit_penalty: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:             Config schema version string.
        admission:           Quota settings.
        sync:                Scheduling settings.
        cost:                Cost estimator parameters.
        detail_ttl_seconds:  Entity detail cache TTL.
        debounce_seconds:    Refresh coordinator debounce window.
    """

    version: str
    admission: AdmissionConfig
    sync: ScheduleConfig
    cost: CostConfig
    detail_ttl_seconds: float
    debounce_seconds: float
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If any value is missing or out of range.
    """
    errors: list[str] = []

    def _num(section: dict, key: str, name: str, default: Any, cast: type = float) -> Any:
        value = section.get(key, default)
        try:
            return cast(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return cast(default)

    def _positive(value: float, label: str) -> None:
        if value <= 0:
            errors.append(f"{label} must be > 0, got {value}")

    def _non_negative(value: float, label: str) -> None:
        if value < 0:
            errors.append(f"{label} must be >= 0, got {value}")

    version = str(raw.get("version", "1.0"))

    # ── Admission ──
    ad_raw = raw.get("admission") or {}
    admission = AdmissionConfig(
        daily_limit=_num(ad_raw, "daily_limit", "admission", 2000, int),
        safety_factor=_num(ad_raw, "safety_factor", "admission", 0.9),
        warning_pct=_num(ad_raw, "warning_pct", "admission", 70),
        critical_pct=_num(ad_raw, "critical_pct", "admission", 90),
    )
    _positive(admission.daily_limit, "admission.daily_limit")
    if not (0.0 < admission.safety_factor <= 1.0):
        errors.append(
            f"admission.safety_factor = {admission.safety_factor} is out of range (0.0, 1.0]"
        )
    if admission.warning_pct > admission.critical_pct:
        errors.append("admission.warning_pct must not exceed admission.critical_pct")

    # ── Scheduling ──
    sy_raw = raw.get("sync") or {}
    schedule = ScheduleConfig(
        interval_minutes=_num(sy_raw, "interval_minutes", "sync", 60),
        startup_delay_seconds=_num(sy_raw, "startup_delay_seconds", "sync", 3),
        focus_min_interval_minutes=_num(sy_raw, "focus_min_interval_minutes", "sync", 15),
        focus_delay_seconds=_num(sy_raw, "focus_delay_seconds", "sync", 2),
    )
    _positive(schedule.interval_minutes, "sync.interval_minutes")
    _non_negative(schedule.startup_delay_seconds, "sync.startup_delay_seconds")
    _non_negative(schedule.focus_min_interval_minutes, "sync.focus_min_interval_minutes")
    _non_negative(schedule.focus_delay_seconds, "sync.focus_delay_seconds")

    # ── Cost heuristic ──
    co_raw = raw.get("cost") or {}
    cost = CostConfig(
        per_activity=_num(co_raw, "per_activity", "cost", 2, int),
        ceiling=_num(co_raw, "ceiling", "cost", 50, int),
        baseline=_num(co_raw, "baseline", "cost", 10, int),
        rate_limit_penalty=_num(co_raw, "rate_limit_penalty", "cost", 100, int),
    )
    for key in ("per_activity", "ceiling", "baseline", "rate_limit_penalty"):
        _non_negative(getattr(cost, key), f"cost.{key}")

    # ── Caches ──
    dc_raw = raw.get("detail_cache") or {}
    ttl = _num(dc_raw, "ttl_seconds", "detail_cache", 300)
    _positive(ttl, "detail_cache.ttl_seconds")

    rf_raw = raw.get("refresh") or {}
    debounce_ms = _num(rf_raw, "debounce_ms", "refresh", 300)
    _non_negative(debounce_ms, "refresh.debounce_ms")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        admission=admission,
        sync=schedule,
        cost=cost,
        detail_ttl_seconds=ttl,
        debounce_seconds=debounce_ms / 1000.0,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.

    Returns:
        Validated SyncConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config(path: Path | None = None) -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    ``path`` is only honoured by the call that performs the first load.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config(path)
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
