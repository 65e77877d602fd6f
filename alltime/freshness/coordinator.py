"""Stale-while-revalidate loading on top of the cache and the deduplicator.

    fresh entry    → returned, nothing fetched
    stale entry    → returned immediately, one background refresh scheduled
    missing entry  → caller awaits the (deduplicated) fetch

A failed background refresh keeps the stale value; stale data beats an error
screen.  Foreground fetch errors propagate to the caller and leave the cache
untouched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from alltime.freshness.cache import Freshness, FreshnessCache
from alltime.freshness.dedup import RequestDeduplicator

logger = logging.getLogger("alltime.freshness.coordinator")

T = TypeVar("T")

KeyListener = Callable[[str], Any]


class StaleWhileRevalidate:
    """Serve cached values instantly and keep them fresh in the background.

    Usage::

        swr = StaleWhileRevalidate(FreshnessCache(), RequestDeduplicator())
        summary = await swr.load(
            "summary:2025-12-04", client.producer("/api/v1/summary/daily", date=day)
        )
    """

    def __init__(
        self,
        cache: FreshnessCache,
        deduplicator: RequestDeduplicator | None = None,
    ) -> None:
        self._cache = cache
        self._dedup = deduplicator or RequestDeduplicator()
        self._refreshing: dict[str, asyncio.Task] = {}
        self._listeners: list[KeyListener] = []

    @property
    def cache(self) -> FreshnessCache:
        return self._cache

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._dedup

    async def load(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        *,
        force_refresh: bool = False,
    ) -> T:
        """Return the value for ``key``, fetching only when needed.

        Args:
            key:           Cache / dedup key.
            producer:      Zero-argument async fetch for ``key``.
            force_refresh: Skip the cache and await a fetch (pull-to-refresh).

        Raises:
            Exception: Whatever the fetch raised, when no cached value exists
                or ``force_refresh`` is set.
        """
        if not force_refresh:
            entry = self._cache.peek(key)
            if entry is not None:
                if self._cache.classify(entry) == Freshness.FRESH:
                    logger.debug("Serving fresh '%s'", key)
                else:
                    logger.debug("Serving stale '%s', revalidating", key)
                    self._schedule_refresh(key, producer)
                return entry.value

        return await self._dedup.run(key, self._storing(key, producer))

    def _storing(
        self, key: str, producer: Callable[[], Awaitable[T]]
    ) -> Callable[[], Awaitable[T]]:
        # The cache write happens inside the shared fetch, so it lands before
        # any waiting caller resumes.
        async def _fetch_and_store() -> T:
            value = await producer()
            self._cache.set(key, value)
            return value

        return _fetch_and_store

    def _schedule_refresh(self, key: str, producer: Callable[[], Awaitable[Any]]) -> None:
        if key in self._refreshing:
            return
        task = asyncio.get_running_loop().create_task(
            self._revalidate(key, producer), name=f"revalidate:{key}"
        )
        self._refreshing[key] = task

        def _done(finished: asyncio.Task) -> None:
            if self._refreshing.get(key) is finished:
                del self._refreshing[key]

        task.add_done_callback(_done)

    async def _revalidate(self, key: str, producer: Callable[[], Awaitable[Any]]) -> None:
        try:
            await self._dedup.run(key, self._storing(key, producer))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Background refresh of '%s' failed, keeping stale value: %s", key, exc)
            return
        self._notify(key)

    # ------------------------------------------------------------------
    # Update notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: KeyListener) -> Callable[[], None]:
        """Register ``listener(key)`` for background updates.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("Update listener failed for '%s'", key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def refreshing_keys(self) -> frozenset[str]:
        return frozenset(self._refreshing)

    def invalidate(self, key: str) -> bool:
        return self._cache.invalidate(key)

    async def wait_idle(self) -> None:
        """Wait until every background refresh has finished."""
        while self._refreshing:
            await asyncio.gather(*self._refreshing.values(), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background refreshes."""
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Cancelled %d background refreshes", len(tasks))
        self._refreshing.clear()
