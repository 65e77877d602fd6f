"""Request deduplication (single-flight) for the sync core.

At most one fetch runs per key.  Callers that arrive while it is running
attach to it and receive the identical outcome — the same value object or
the same exception instance.  Once the fetch settles the entry is gone, so
the next call for that key starts a fresh fetch; failures are never replayed.

The in-flight map is only touched on the event loop thread and never across
an ``await`` between lookup and insert, which serializes all mutations.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from alltime.errors import ReentrantRequestError

logger = logging.getLogger("alltime.freshness.dedup")

T = TypeVar("T")

# Keys whose producer is running in the current task context.
_producing: contextvars.ContextVar[frozenset[str]] = contextvars.ContextVar(
    "alltime_dedup_producing", default=frozenset()
)


@dataclass
class InFlightRequest:
    """One running fetch and the number of callers waiting on it."""

    key: str
    task: asyncio.Task
    subscribers: int = 0


class RequestDeduplicator:
    """Collapse concurrent identical requests into one underlying call.

    Usage::

        dedup = RequestDeduplicator()
        summary = await dedup.run("summary:2025-12-04", lambda: client.fetch(...))

    Cancelling one waiting caller detaches only that caller.  The fetch is
    cancelled only when its last caller goes away.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, InFlightRequest] = {}

    async def run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """Run ``producer`` once for ``key``, sharing the result with concurrent callers.

        Args:
            key:      Logical request key (see ``alltime.freshness.keys``).
            producer: Zero-argument callable returning an awaitable.  Invoked
                      only by the caller that creates the in-flight entry.

        Returns:
            The producer's result.

        Raises:
            ReentrantRequestError: If called for ``key`` from inside the
                producer of ``key``.
            Exception: Whatever the producer raised, identical for all callers.
        """
        if key in _producing.get():
            raise ReentrantRequestError(key)

        entry = self._in_flight.get(key)
        if entry is None:
            task = asyncio.get_running_loop().create_task(
                self._produce(key, producer), name=f"dedup:{key}"
            )
            task.add_done_callback(self._on_task_done)
            entry = InFlightRequest(key=key, task=task)
            self._in_flight[key] = entry
            logger.debug("Started request for '%s'", key)
        else:
            logger.debug(
                "Reusing in-flight request for '%s' (%d waiting)", key, entry.subscribers
            )

        entry.subscribers += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            if not entry.task.done() and entry.subscribers == 1:
                logger.debug("Last caller for '%s' cancelled; cancelling request", key)
                entry.task.cancel()
                self._forget(entry)
            raise
        finally:
            entry.subscribers -= 1

    async def _produce(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        # Runs in the task's own context copy, so the marker stays local to
        # this producer and whatever it spawns.
        _producing.set(_producing.get() | {key})
        try:
            return await producer()
        finally:
            # Drop the entry before any waiter resumes.
            entry = self._in_flight.get(key)
            if entry is not None and entry.task is asyncio.current_task():
                del self._in_flight[key]

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        # Mark the exception retrieved; waiters re-raise it via shield().
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Request %s failed: %r", task.get_name(), task.exception())

    def _forget(self, entry: InFlightRequest) -> None:
        if self._in_flight.get(entry.key) is entry:
            del self._in_flight[entry.key]

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def subscriber_count(self, key: str) -> int:
        entry = self._in_flight.get(key)
        return entry.subscribers if entry else 0

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def in_flight_keys(self) -> list[str]:
        return list(self._in_flight)

    def cancel_all(self) -> int:
        """Cancel every in-flight request (sign-out, shutdown)."""
        entries = list(self._in_flight.values())
        self._in_flight.clear()
        for entry in entries:
            entry.task.cancel()
        if entries:
            logger.info("Cancelled %d in-flight requests", len(entries))
        return len(entries)

    def __repr__(self) -> str:
        return f"<RequestDeduplicator in_flight={self.in_flight_count}>"


def producer_of(func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> Callable[[], Awaitable[T]]:
    """Bind arguments to an async function, giving a zero-argument producer."""

    def _producer() -> Awaitable[T]:
        return func(*args, **kwargs)

    return _producer
