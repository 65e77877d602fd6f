"""Shared fixtures for sync scheduler tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from alltime.health.pipeline import HealthSyncPipeline, HealthSyncResult
from alltime.store import InMemoryKeyValueStore
from alltime.sync.collaborators import SyncCollaborator


class FakeCollaborator(SyncCollaborator):
    """Collaborator whose sync() is an AsyncMock."""

    def __init__(self, name: str, side_effect: Any = None) -> None:
        self.name = name
        self.mock = AsyncMock(return_value={"status": "ok"}, side_effect=side_effect)

    async def sync(self) -> Any:
        return await self.mock()


class WallClock:
    """Aware UTC clock the tests move by hand."""

    def __init__(self) -> None:
        self.now = datetime(2025, 12, 4, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def make_collaborator():
    return FakeCollaborator


@pytest.fixture
def wall_clock() -> WallClock:
    return WallClock()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def health_pipeline() -> MagicMock:
    pipeline = MagicMock(spec=HealthSyncPipeline)
    pipeline.refresh_authorization = AsyncMock()
    pipeline.run = AsyncMock(return_value=HealthSyncResult(status="success"))
    pipeline.authorization = None
    return pipeline
