"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from alltime.config_loader import (
    ConfigValidationError,
    SyncConfig,
    _validate_and_build,
    config_from_mapping,
    get_sync_config,
    load_sync_config,
    reload_sync_config,
)
from alltime.health.types import REQUIRED_TYPES, HealthTypeId


class TestConfigLoading:
    """Tests for loading the bundled sync_config.yaml."""

    def test_load_default_config(self, sync_config: SyncConfig) -> None:
        """The bundled sync_config.yaml loads without errors."""
        assert sync_config.version == "1.0"

    def test_cache_defaults(self, sync_config: SyncConfig) -> None:
        """Entries are fresh for 60s and servable while stale until 300s."""
        assert sync_config.cache.fresh_ttl_seconds == 60
        assert sync_config.cache.stale_ttl_seconds == 300
        assert sync_config.cache.eviction_ttl_seconds is None
        assert sync_config.cache.effective_eviction_ttl == 300

    def test_scheduler_defaults(self, sync_config: SyncConfig) -> None:
        """Periodic sync runs every 15 minutes, throttled to one per 5 minutes."""
        assert sync_config.scheduler.periodic_interval_seconds == 900
        assert sync_config.scheduler.min_interval_seconds == 300

    def test_health_defaults(self, sync_config: SyncConfig) -> None:
        """All eight metric types are required; first sync covers 14 days."""
        health = sync_config.health
        assert health.initial_sync_days == 14
        assert health.required_types == REQUIRED_TYPES
        assert health.sleep.window_start_hours == -6
        assert health.sleep.window_end_hours == 14
        assert health.sleep.session_gap_minutes == 30
        assert health.authorization_recheck_delay_seconds == 1.5

    def test_calendar_retry_defaults(self, sync_config: SyncConfig) -> None:
        """Calendar syncs retry 3 times after 2s, 4s; state resets after 10 minutes."""
        retry = sync_config.calendar_retry
        assert retry.max_attempts == 3
        assert retry.base_delay_seconds == 2
        assert retry.reset_after_seconds == 600

    def test_empty_mapping_uses_defaults(self) -> None:
        """Missing sections fall back to defaults."""
        config = config_from_mapping({})
        assert config.cache.fresh_ttl_seconds == 60
        assert config.health.required_types == REQUIRED_TYPES


class TestConfigValidation:
    """Tests for config validation logic."""

    def test_stale_below_fresh_raises(self) -> None:
        """stale_ttl_seconds must not be below fresh_ttl_seconds."""
        raw = {"cache": {"fresh_ttl_seconds": 120, "stale_ttl_seconds": 60}}
        with pytest.raises(ConfigValidationError, match="stale_ttl_seconds"):
            _validate_and_build(raw)

    def test_eviction_below_stale_raises(self) -> None:
        raw = {"cache": {"stale_ttl_seconds": 300, "eviction_ttl_seconds": 100}}
        with pytest.raises(ConfigValidationError, match="eviction_ttl_seconds"):
            _validate_and_build(raw)

    def test_non_numeric_value_raises(self) -> None:
        """Non-numeric values should raise ConfigValidationError."""
        raw = {"scheduler": {"periodic_interval_seconds": "often"}}
        with pytest.raises(ConfigValidationError, match="must be a number"):
            _validate_and_build(raw)

    def test_unknown_health_type_raises(self) -> None:
        raw = {"health": {"required_types": ["HKQuantityTypeIdentifierStepCount", "Bogus"]}}
        with pytest.raises(ConfigValidationError, match="unknown type"):
            _validate_and_build(raw)

    def test_subset_of_types_allowed(self) -> None:
        raw = {"health": {"required_types": ["HKCategoryTypeIdentifierSleepAnalysis"]}}
        config = _validate_and_build(raw)
        assert config.health.required_types == (HealthTypeId.SLEEP_ANALYSIS,)

    def test_sleep_must_be_a_mapping(self) -> None:
        """A scalar sleep section is reported, not crashed on."""
        raw = {"health": {"sleep": 5}}
        with pytest.raises(ConfigValidationError, match="health.sleep' must be a mapping"):
            _validate_and_build(raw)

    def test_calendar_retry_needs_an_attempt(self) -> None:
        raw = {"calendar_retry": {"max_attempts": 0}}
        with pytest.raises(ConfigValidationError, match="calendar_retry.max_attempts"):
            _validate_and_build(raw)

    def test_all_errors_reported_together(self) -> None:
        """Every problem is listed in one ConfigValidationError."""
        raw = {
            "cache": {"fresh_ttl_seconds": 0},
            "scheduler": {"min_interval_seconds": -1},
            "health": {"initial_sync_days": 0, "required_types": []},
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "4 validation error(s)" in message
        assert "fresh_ttl_seconds" in message
        assert "min_interval_seconds" in message
        assert "initial_sync_days" in message
        assert "required_types" in message


class TestConfigFiles:
    def test_hot_reload(self, tmp_path: Path, isolated_config) -> None:
        """reload_sync_config() should replace the global singleton."""
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text(
            'version: "2.0-test"\ncache:\n  fresh_ttl_seconds: 30\n  stale_ttl_seconds: 120\n'
        )

        new_config = reload_sync_config(path=config_file)
        assert new_config.version == "2.0-test"
        assert get_sync_config() is new_config
        assert get_sync_config().cache.fresh_ttl_seconds == 30

    def test_invalid_reload_keeps_old_config(self, tmp_path: Path, isolated_config) -> None:
        """A failed reload leaves the previous config in place."""
        current = get_sync_config()
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("cache:\n  fresh_ttl_seconds: -5\n")

        with pytest.raises(ConfigValidationError):
            reload_sync_config(path=config_file)
        assert get_sync_config() is current

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("cache: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_sync_config(path=config_file)

    def test_load_nonexistent_file_raises(self) -> None:
        """Loading a nonexistent file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_sync_config(path=Path("/nonexistent/path/sync_config.yaml"))
