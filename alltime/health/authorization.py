"""Health permission resolution.

The permission source wraps the device API.  Its ``request_authorization``
is fire-and-forget: the platform deliberately hides whether *read* access was
granted, so the callback outcome is never used as proof of anything.  After a
prompt the authorizer simply waits a moment and asks again.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from alltime.health.types import (
    REQUIRED_TYPES,
    AuthorizationKind,
    HealthAuthorizationState,
    HealthTypeId,
    PermissionStatus,
    classify_authorization,
)

logger = logging.getLogger("alltime.health.authorization")


class HealthPermissionSource(ABC):
    """Device health-data permission API."""

    @abstractmethod
    def is_health_data_available(self) -> bool:
        """Return False when the device has no health-data capability at all."""

    @abstractmethod
    async def query_authorization(self, type_id: HealthTypeId) -> PermissionStatus:
        """Return the current permission status for one type."""

    @abstractmethod
    async def request_authorization(self, types: Iterable[HealthTypeId]) -> None:
        """Show the system prompt for ``types``.  The outcome is unknowable."""


class HealthAuthorizer:
    """Resolve and (at most once per session) request health permissions.

    Usage::

        authorizer = HealthAuthorizer(permission_source)
        state = await authorizer.resolve()
        if state.kind == AuthorizationKind.NOT_DETERMINED:
            state = await authorizer.request_if_needed()
    """

    def __init__(
        self,
        source: HealthPermissionSource,
        required_types: Sequence[HealthTypeId] = REQUIRED_TYPES,
        recheck_delay: float = 1.5,
    ) -> None:
        if not required_types:
            raise ValueError("HealthAuthorizer needs at least one required type")
        self._source = source
        self._required_types = tuple(required_types)
        self._recheck_delay = recheck_delay
        self._state: HealthAuthorizationState | None = None
        self._has_requested = False

    @property
    def required_types(self) -> tuple[HealthTypeId, ...]:
        return self._required_types

    @property
    def state(self) -> HealthAuthorizationState | None:
        """Last resolved state (None before the first resolve())."""
        return self._state

    async def resolve(self) -> HealthAuthorizationState:
        """Query every required type and classify the result."""
        if not self._source.is_health_data_available():
            logger.info("Health data unavailable on this device")
            self._state = HealthAuthorizationState.unavailable()
            return self._state

        answers = await asyncio.gather(
            *(self._source.query_authorization(t) for t in self._required_types)
        )
        statuses = dict(zip(self._required_types, answers))
        state = classify_authorization(statuses)

        if self._state is None or self._state.kind != state.kind:
            logger.info("Health authorization resolved: %s", state)
        else:
            logger.debug("Health authorization unchanged: %s", state)
        self._state = state
        return state

    async def request_if_needed(self) -> HealthAuthorizationState:
        """Prompt for permissions when some type is still undetermined.

        The prompt is shown at most once per session.  The result of the
        request itself is ignored; the state is re-resolved after
        ``recheck_delay`` seconds so the platform can settle.
        """
        state = await self.resolve()
        if state.kind == AuthorizationKind.UNAVAILABLE:
            return state

        undetermined = [
            t for t, s in state.statuses.items() if s == PermissionStatus.UNDETERMINED
        ]
        if not undetermined:
            if state.kind == AuthorizationKind.DENIED:
                logger.warning(
                    "All health types denied — the system will not show a prompt. "
                    "The user must enable access in Settings."
                )
            return state

        if self._has_requested:
            logger.debug("Health authorization already requested in this session")
            return state

        self._has_requested = True
        logger.info("Requesting health authorization for %d types", len(self._required_types))
        await self._source.request_authorization(self._required_types)

        if self._recheck_delay > 0:
            await asyncio.sleep(self._recheck_delay)
        return await self.resolve()

    def reset_session(self) -> None:
        """Forget the per-session prompt flag and cached state (sign-out)."""
        self._has_requested = False
        self._state = None
