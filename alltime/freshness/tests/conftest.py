"""Shared fixtures for the freshness layer tests."""

from __future__ import annotations

import pytest

from alltime.freshness.cache import FreshnessCache
from alltime.freshness.coordinator import StaleWhileRevalidate
from alltime.freshness.dedup import RequestDeduplicator


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> FreshnessCache:
    return FreshnessCache(fresh_ttl=60, stale_ttl=300, clock=clock)


@pytest.fixture
def dedup() -> RequestDeduplicator:
    return RequestDeduplicator()


@pytest.fixture
def swr(cache: FreshnessCache, dedup: RequestDeduplicator) -> StaleWhileRevalidate:
    return StaleWhileRevalidate(cache, dedup)
