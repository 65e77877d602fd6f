"""Shared fixtures for core module tests (config, store, runtime)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from alltime import config_loader
from alltime.config import Settings, get_settings
from alltime.config_loader import SyncConfig, load_sync_config
from alltime.health.authorization import HealthPermissionSource
from alltime.health.pipeline import HealthDataSource
from alltime.health.types import PermissionStatus


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the bundled sync config for tests."""
    return load_sync_config()


@pytest.fixture
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Reset the global sync config singleton for the duration of a test."""
    monkeypatch.setattr(config_loader, "_config", None)
    return config_loader


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    # Keep a developer .env out of the test run
    monkeypatch.chdir(tmp_path)
    return Settings(
        api_base_url="https://api.alltime.test",
        api_token="test-token",
        timezone="America/New_York",
    )


@pytest.fixture
def clear_settings_cache(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def permission_source() -> MagicMock:
    source = MagicMock(spec=HealthPermissionSource)
    source.is_health_data_available.return_value = True
    source.query_authorization = AsyncMock(return_value=PermissionStatus.GRANTED)
    source.request_authorization = AsyncMock()
    return source


@pytest.fixture
def health_source() -> MagicMock:
    source = MagicMock(spec=HealthDataSource)
    source.query_samples = AsyncMock(return_value=[])
    return source
