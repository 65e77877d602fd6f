"""Sync collaborators run by the scheduler on every pass.

Each collaborator is independent: one failing does not stop the others.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping

from alltime.api.client import BackendClient
from alltime.freshness.coordinator import StaleWhileRevalidate
from alltime.sync.retry import ProviderRetryManager

logger = logging.getLogger("alltime.sync.collaborators")


class SyncCollaborator(ABC):
    """One unit of work in a sync pass."""

    name: str = "collaborator"

    @abstractmethod
    async def sync(self) -> Any:
        """Run the collaborator.  Raise on failure."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class CalendarSyncCollaborator(SyncCollaborator):
    """Ask the backend to pull fresh events from one calendar provider.

    Transient failures are retried through ``retry``; without one the sync is
    attempted once.  Providers that need the user to reconnect are reported
    by ``needs_reconnection``.
    """

    def __init__(
        self,
        client: BackendClient,
        provider: str,
        retry: ProviderRetryManager | None = None,
    ) -> None:
        self._client = client
        self._provider = provider.lower()
        self._retry = retry if retry is not None else ProviderRetryManager(max_attempts=1)
        self.name = f"calendar:{self._provider}"

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def needs_reconnection(self) -> bool:
        return self._retry.needs_reconnection(self._provider)

    async def sync(self) -> Any:
        result = await self._retry.run(
            self._provider, lambda: self._client.post(f"/sync/{self._provider}")
        )
        logger.info("Calendar sync for %s complete", self._provider)
        return result


class PrefetchCollaborator(SyncCollaborator):
    """Warm the cache for views the user is likely to open next.

    Args:
        coordinator: Shared stale-while-revalidate coordinator.
        client:      Backend client building the fetches.
        endpoints:   ``(endpoint, params)`` pairs; params may be a callable
                     returning the mapping, evaluated at sync time (e.g. today's date).
    """

    name = "prefetch"

    def __init__(
        self,
        coordinator: StaleWhileRevalidate,
        client: BackendClient,
        endpoints: Iterable[tuple[str, Any]],
    ) -> None:
        self._coordinator = coordinator
        self._client = client
        self._endpoints = list(endpoints)

    async def sync(self) -> list[str]:
        refreshed: list[str] = []
        for endpoint, params in self._endpoints:
            resolved: Mapping[str, Any] = params() if callable(params) else (params or {})
            key, producer = self._client.keyed_producer(endpoint, **resolved)
            await self._coordinator.load(key, producer, force_refresh=True)
            refreshed.append(key)
        logger.debug("Prefetched %d keys", len(refreshed))
        return refreshed
