"""Data freshness primitives.

Modules:
    keys        — Deterministic cache / dedup keys
    cache       — TTL freshness cache (fresh / stale / expired)
    dedup       — Single-flight request deduplicator
    coordinator — Stale-while-revalidate loading
"""

from alltime.freshness.cache import CacheEntry, Freshness, FreshnessCache
from alltime.freshness.coordinator import StaleWhileRevalidate
from alltime.freshness.dedup import RequestDeduplicator
from alltime.freshness.keys import cache_key, date_range_key, day_key

__all__ = [
    "CacheEntry",
    "Freshness",
    "FreshnessCache",
    "RequestDeduplicator",
    "StaleWhileRevalidate",
    "cache_key",
    "day_key",
    "date_range_key",
]
