"""Shared fixtures and fakes for health authorization / sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from alltime.config_loader import HealthConfig
from alltime.health.authorization import HealthAuthorizer, HealthPermissionSource
from alltime.health.models import HealthSample, SubmitHealthMetricsResponse
from alltime.health.pipeline import HealthDataSource, HealthSyncPipeline
from alltime.health.types import REQUIRED_TYPES, HealthTypeId, PermissionStatus
from alltime.store import InMemoryKeyValueStore

UTC = ZoneInfo("UTC")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakePermissionSource(HealthPermissionSource):
    """Permission API answering from a dict; a prompt applies ``after_request``."""

    def __init__(
        self,
        statuses: dict[HealthTypeId, PermissionStatus] | None = None,
        available: bool = True,
        after_request: dict[HealthTypeId, PermissionStatus] | None = None,
    ) -> None:
        self.statuses = dict(statuses or {})
        self.available = available
        self.after_request = after_request or {}
        self.request_calls = 0

    def is_health_data_available(self) -> bool:
        return self.available

    async def query_authorization(self, type_id: HealthTypeId) -> PermissionStatus:
        return self.statuses.get(type_id, PermissionStatus.UNDETERMINED)

    async def request_authorization(self, types: Iterable[HealthTypeId]) -> None:
        self.request_calls += 1
        self.statuses.update(self.after_request)


class FakeHealthSource(HealthDataSource):
    """Device health store over a fixed list of samples."""

    def __init__(
        self,
        samples: Iterable[HealthSample] = (),
        failing: Iterable[HealthTypeId] = (),
    ) -> None:
        self.samples = list(samples)
        self.failing = set(failing)
        self.queries: list[tuple[HealthTypeId, datetime, datetime]] = []

    async def query_samples(self, type_id, start, end):
        self.queries.append((type_id, start, end))
        if type_id in self.failing:
            raise RuntimeError(f"query for {type_id.short_name} failed")
        return [s for s in self.samples if s.type_id == type_id and start <= s.start < end]


def _submit_response(records):
    return SubmitHealthMetricsResponse(status="ok", records_upserted=len(records))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tz() -> ZoneInfo:
    return UTC


@pytest.fixture
def now() -> datetime:
    """Current time for pipeline tests: 2025-12-04 09:00 UTC."""
    return datetime(2025, 12, 4, 9, 0, tzinfo=UTC)


@pytest.fixture
def make_sample():
    """Factory: make_sample(type_id, start, minutes=1, value=0, category=None)."""

    def _make(
        type_id: HealthTypeId,
        start: datetime,
        minutes: float = 1,
        value: float = 0.0,
        category: str | None = None,
        source: str | None = None,
    ) -> HealthSample:
        return HealthSample(
            type_id=type_id,
            start=start,
            end=start + timedelta(minutes=minutes),
            value=value,
            category=category,
            source=source,
        )

    return _make


@pytest.fixture
def all_granted() -> dict[HealthTypeId, PermissionStatus]:
    return {t: PermissionStatus.GRANTED for t in REQUIRED_TYPES}


@pytest.fixture
def permission_source(all_granted) -> FakePermissionSource:
    return FakePermissionSource(all_granted)


@pytest.fixture
def permission_source_factory():
    return FakePermissionSource


@pytest.fixture
def health_source() -> FakeHealthSource:
    return FakeHealthSource()


@pytest.fixture
def health_source_factory():
    return FakeHealthSource


@pytest.fixture
def submitter() -> AsyncMock:
    mock = AsyncMock()
    mock.submit_daily_metrics = AsyncMock(side_effect=_submit_response)
    return mock


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def authorizer(permission_source: FakePermissionSource) -> HealthAuthorizer:
    return HealthAuthorizer(permission_source, recheck_delay=0)


@pytest.fixture
def pipeline(authorizer, health_source, submitter, store, tz, now) -> HealthSyncPipeline:
    return HealthSyncPipeline(
        authorizer,
        health_source,
        submitter,
        store,
        tz,
        config=HealthConfig(),
        clock=lambda: now,
    )
