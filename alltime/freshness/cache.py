"""In-memory freshness cache with TTL-based staleness classification.

Each key holds one immutable ``CacheEntry(value, stored_at)``.  Age against
two thresholds decides how an entry is served:

    age <  fresh_ttl                → FRESH    (serve, no refresh)
    fresh_ttl <= age < stale_ttl    → STALE    (serve, refresh in background)
    age >= stale_ttl                → EXPIRED  (not served once past the eviction ceiling)

Nothing is written to disk; the cache is a speed-up, not a source of truth.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("alltime.freshness.cache")

DEFAULT_FRESH_TTL = 60.0
DEFAULT_STALE_TTL = 300.0


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"
    MISSING = "missing"


def classify_age(age: float, fresh_ttl: float, stale_ttl: float) -> Freshness:
    """Classify an entry age (seconds) against the two thresholds."""
    if age < fresh_ttl:
        return Freshness.FRESH
    if age < stale_ttl:
        return Freshness.STALE
    return Freshness.EXPIRED


@dataclass(frozen=True)
class CacheEntry:
    """A cached value stamped with the clock reading at store time."""

    key: str
    value: Any
    stored_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


@dataclass
class CacheStats:
    """Snapshot of cache contents for diagnostics."""

    entries: int
    fresh: int
    stale: int
    expired: int
    oldest_age: float | None
    newest_age: float | None


class FreshnessCache:
    """Keyed (value, timestamp) store with fresh/stale TTLs.

    Every operation takes one lock, so the cache can be shared between the
    event loop and worker threads.

    Usage::

        cache = FreshnessCache(fresh_ttl=60, stale_ttl=300)
        cache.set("summary:2025-12-04", payload)
        if cache.needs_refresh("summary:2025-12-04"):
            ...
    """

    def __init__(
        self,
        fresh_ttl: float = DEFAULT_FRESH_TTL,
        stale_ttl: float = DEFAULT_STALE_TTL,
        eviction_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            fresh_ttl:    Seconds an entry is served without refresh.
            stale_ttl:    Seconds an entry may be served while refreshing.
            eviction_ttl: Hard ceiling for get(); defaults to stale_ttl.
            clock:        Monotonic seconds source (injectable for tests).
        """
        if fresh_ttl <= 0:
            raise ValueError(f"fresh_ttl must be positive, got {fresh_ttl}")
        if stale_ttl < fresh_ttl:
            raise ValueError(f"stale_ttl ({stale_ttl}) must be >= fresh_ttl ({fresh_ttl})")
        if eviction_ttl is None:
            eviction_ttl = stale_ttl
        if eviction_ttl < stale_ttl:
            raise ValueError(
                f"eviction_ttl ({eviction_ttl}) must be >= stale_ttl ({stale_ttl})"
            )

        self.fresh_ttl = fresh_ttl
        self.stale_ttl = stale_ttl
        self.eviction_ttl = eviction_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any, clock: Callable[[], float] = time.monotonic) -> "FreshnessCache":
        """Build from a ``CacheConfig`` section."""
        return cls(
            fresh_ttl=config.fresh_ttl_seconds,
            stale_ttl=config.stale_ttl_seconds,
            eviction_ttl=config.eviction_ttl_seconds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _live_entry(self, key: str, now: float) -> CacheEntry | None:
        # Caller holds the lock.
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.age(now) >= self.eviction_ttl:
            del self._entries[key]
            logger.debug("Evicted expired cache entry '%s'", key)
            return None
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key`` (fresh or stale), or None."""
        with self._lock:
            return self._live_entry(key, self._clock())

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value regardless of staleness, or ``default``.

        Entries older than the eviction ceiling are removed and not returned.
        """
        entry = self.peek(key)
        if entry is None:
            logger.debug("Cache MISS '%s'", key)
            return default
        logger.debug("Cache HIT '%s'", key)
        return entry.value

    def freshness(self, key: str) -> Freshness:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                return Freshness.MISSING
            return classify_age(entry.age(now), self.fresh_ttl, self.stale_ttl)

    def classify(self, entry: CacheEntry) -> Freshness:
        """Classify an entry already read via peek() against the current clock."""
        return classify_age(entry.age(self._clock()), self.fresh_ttl, self.stale_ttl)

    def is_fresh(self, key: str) -> bool:
        """True when the entry exists and is younger than fresh_ttl."""
        return self.freshness(key) == Freshness.FRESH

    def needs_refresh(self, key: str) -> bool:
        """True when the entry is missing or older than fresh_ttl."""
        return self.freshness(key) != Freshness.FRESH

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.peek(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any) -> CacheEntry:
        """Store ``value`` under ``key``, replacing any previous entry."""
        with self._lock:
            entry = CacheEntry(key=key, value=value, stored_at=self._clock())
            self._entries[key] = entry
        logger.debug("Cache SET '%s'", key)
        return entry

    def invalidate(self, key: str) -> bool:
        """Drop one entry.  Returns True if it existed."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated cache entry '%s'", key)
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug("Invalidated %d cache entries with prefix '%s'", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared cache (%d entries)", count)
        return count

    def purge_expired(self) -> int:
        """Remove every entry past the eviction ceiling."""
        with self._lock:
            now = self._clock()
            doomed = [k for k, e in self._entries.items() if e.age(now) >= self.eviction_ttl]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug("Purged %d expired cache entries", len(doomed))
        return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            ages = [e.age(now) for e in self._entries.values()]
        states = [classify_age(a, self.fresh_ttl, self.stale_ttl) for a in ages]
        return CacheStats(
            entries=len(ages),
            fresh=states.count(Freshness.FRESH),
            stale=states.count(Freshness.STALE),
            expired=states.count(Freshness.EXPIRED),
            oldest_age=max(ages) if ages else None,
            newest_age=min(ages) if ages else None,
        )
