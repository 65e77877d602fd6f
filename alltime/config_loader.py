"""Load, validate, and hot-reload the AllTime sync tunables.

The tunables live in ``sync_config.yaml`` alongside this module.  At startup
they are loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk — no restart required.

Usage::

    from alltime.config_loader import get_sync_config

    config = get_sync_config()
    config.cache.fresh_ttl_seconds           # 60.0
    config.scheduler.periodic_interval_seconds  # 900.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from alltime.health.types import REQUIRED_TYPES, HealthTypeId

logger = logging.getLogger("alltime.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class CacheConfig:
    """TTL thresholds for the freshness cache."""

    fresh_ttl_seconds: float = 60.0
    stale_ttl_seconds: float = 300.0
    eviction_ttl_seconds: float | None = None  # None = stale_ttl_seconds

    @property
    def effective_eviction_ttl(self) -> float:
        if self.eviction_ttl_seconds is None:
            return self.stale_ttl_seconds
        return self.eviction_ttl_seconds


@dataclass
class SchedulerConfig:
    """Periodic sync timing."""

    periodic_interval_seconds: float = 900.0
    min_interval_seconds: float = 300.0


@dataclass
class RetryConfig:
    """Calendar provider sync retry."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0  # doubled after every failed attempt
    reset_after_seconds: float = 600.0


@dataclass
class SleepConfig:
    """Which samples count toward a day's sleep."""

    window_start_hours: float = -6.0
    window_end_hours: float = 14.0
    session_gap_minutes: float = 30.0


@dataclass
class HealthConfig:
    """Health authorization and sync settings."""

    initial_sync_days: int = 14
    required_types: tuple[HealthTypeId, ...] = REQUIRED_TYPES
    sleep: SleepConfig = field(default_factory=SleepConfig)
    authorization_recheck_delay_seconds: float = 1.5


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    This is the single in-memory representation of sync_config.yaml.
    The cache, scheduler and health pipeline all read from this object.

    Attributes:
        version:   Config schema version string.
        cache:     Freshness cache thresholds.
        scheduler: Periodic sync timing.
        calendar_retry: Calendar provider retry/backoff.
        health:    Health authorization / aggregation settings.
    """

    version: str = "1.0"
    cache: CacheConfig = field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    calendar_retry: RetryConfig = field(default_factory=RetryConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
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
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Missing sections fall back to defaults; every problem found is reported
    in a single ConfigValidationError.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ConfigValidationError: If any value is missing its constraints.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, path: str) -> float:
        value = section.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default

    def _section(key: str) -> dict:
        value = raw.get(key) or {}
        if not isinstance(value, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return value

    version = str(raw.get("version", "1.0"))

    # ── Cache ──
    cache_raw = _section("cache")
    fresh = _number(cache_raw, "fresh_ttl_seconds", 60.0, "cache")
    stale = _number(cache_raw, "stale_ttl_seconds", 300.0, "cache")
    eviction: float | None = None
    if cache_raw.get("eviction_ttl_seconds") is not None:
        eviction = _number(cache_raw, "eviction_ttl_seconds", stale, "cache")

    if fresh <= 0:
        errors.append(f"cache.fresh_ttl_seconds must be positive, got {fresh}")
    if stale < fresh:
        errors.append(
            f"cache.stale_ttl_seconds ({stale}) must be >= fresh_ttl_seconds ({fresh})"
        )
    if eviction is not None and eviction < stale:
        errors.append(
            f"cache.eviction_ttl_seconds ({eviction}) must be >= stale_ttl_seconds ({stale})"
        )
    cache = CacheConfig(
        fresh_ttl_seconds=fresh,
        stale_ttl_seconds=stale,
        eviction_ttl_seconds=eviction,
    )

    # ── Scheduler ──
    sched_raw = _section("scheduler")
    scheduler = SchedulerConfig(
        periodic_interval_seconds=_number(
            sched_raw, "periodic_interval_seconds", 900.0, "scheduler"
        ),
        min_interval_seconds=_number(sched_raw, "min_interval_seconds", 300.0, "scheduler"),
    )
    if scheduler.periodic_interval_seconds <= 0:
        errors.append("scheduler.periodic_interval_seconds must be positive")
    if scheduler.min_interval_seconds < 0:
        errors.append("scheduler.min_interval_seconds must be >= 0")

    # ── Calendar retry ──
    retry_raw = _section("calendar_retry")
    max_attempts_raw = retry_raw.get("max_attempts", 3)
    try:
        max_attempts = int(max_attempts_raw)
    except (TypeError, ValueError):
        errors.append(f"calendar_retry.max_attempts must be an integer, got {max_attempts_raw!r}")
        max_attempts = 3
    if max_attempts < 1:
        errors.append("calendar_retry.max_attempts must be >= 1")
    calendar_retry = RetryConfig(
        max_attempts=max_attempts,
        base_delay_seconds=_number(retry_raw, "base_delay_seconds", 2.0, "calendar_retry"),
        reset_after_seconds=_number(retry_raw, "reset_after_seconds", 600.0, "calendar_retry"),
    )
    if calendar_retry.base_delay_seconds < 0:
        errors.append("calendar_retry.base_delay_seconds must be >= 0")
    if calendar_retry.reset_after_seconds <= 0:
        errors.append("calendar_retry.reset_after_seconds must be positive")

    # ── Health ──
    health_raw = _section("health")
    initial_days_raw = health_raw.get("initial_sync_days", 14)
    try:
        initial_days = int(initial_days_raw)
    except (TypeError, ValueError):
        errors.append(f"health.initial_sync_days must be an integer, got {initial_days_raw!r}")
        initial_days = 14
    if initial_days < 1:
        errors.append("health.initial_sync_days must be >= 1")

    required: list[HealthTypeId] = []
    types_raw = health_raw.get("required_types")
    if types_raw is None:
        required = list(REQUIRED_TYPES)
    elif not isinstance(types_raw, list) or not types_raw:
        errors.append("health.required_types must be a non-empty list")
    else:
        for identifier in types_raw:
            try:
                type_id = HealthTypeId(identifier)
            except ValueError:
                errors.append(f"health.required_types: unknown type {identifier!r}")
                continue
            if type_id not in required:
                required.append(type_id)

    sleep_raw = health_raw.get("sleep") or {}
    if not isinstance(sleep_raw, dict):
        errors.append("'health.sleep' must be a mapping")
        sleep_raw = {}
    sleep = SleepConfig(
        window_start_hours=_number(sleep_raw, "window_start_hours", -6.0, "health.sleep"),
        window_end_hours=_number(sleep_raw, "window_end_hours", 14.0, "health.sleep"),
        session_gap_minutes=_number(sleep_raw, "session_gap_minutes", 30.0, "health.sleep"),
    )
    if sleep.window_end_hours <= sleep.window_start_hours:
        errors.append("health.sleep.window_end_hours must be after window_start_hours")

    recheck = _number(health_raw, "authorization_recheck_delay_seconds", 1.5, "health")
    if recheck < 0:
        errors.append("health.authorization_recheck_delay_seconds must be >= 0")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        cache=cache,
        scheduler=scheduler,
        calendar_retry=calendar_retry,
        health=HealthConfig(
            initial_sync_days=initial_days,
            required_types=tuple(required),
            sleep=sleep,
            authorization_recheck_delay_seconds=recheck,
        ),
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


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
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


def config_from_mapping(raw: dict[str, Any]) -> SyncConfig:
    """Validate an in-memory mapping (tests, embedding apps with their own config store)."""
    return _validate_and_build(raw)
