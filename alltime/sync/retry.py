"""Per-provider retry with exponential backoff for calendar syncs.

Transient failures (network, timeouts, 5xx, 408/429) are retried after
``base_delay``, ``2 * base_delay``, ``4 * base_delay``... seconds, up to
``max_attempts`` tries.  Failures that retrying cannot fix (revoked or expired
credentials, 4xx request errors) stop immediately and flag the provider as
needing a reconnect, as does running out of attempts.

State is kept per provider (case-insensitive) and forgotten when the last
attempt is older than ``reset_after`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from alltime.errors import AuthError, ServerError

logger = logging.getLogger("alltime.sync.retry")


def is_permanent_failure(exc: BaseException) -> bool:
    """True when retrying ``exc`` cannot succeed and the user must reconnect."""
    if isinstance(exc, AuthError):
        return True
    if isinstance(exc, ServerError):
        return exc.permanent
    return False


@dataclass
class ProviderRetryState:
    """Retry bookkeeping for one provider.

    Attributes:
        attempts:           Attempts made in the current (failing) run.
        last_attempt_at:    Clock reading of the last run start (None = never).
        reconnect_required: The last run failed permanently or exhausted retries.
        in_progress:        A run for this provider is executing.
        status:             Human-readable status for the UI (None when idle).
    """

    attempts: int = 0
    last_attempt_at: float | None = None
    reconnect_required: bool = False
    in_progress: bool = False
    status: str | None = None


class ProviderRetryManager:
    """Run provider syncs with retry, tracking who needs a reconnect.

    Usage::

        retry = ProviderRetryManager()
        await retry.run("google", lambda: client.post("/sync/google"))
        retry.needs_reconnection("google")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        reset_after: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {base_delay}")
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._reset_after = reset_after
        self._clock = clock
        self._sleep = sleep
        self._states: dict[str, ProviderRetryState] = {}

    @classmethod
    def from_config(cls, config: Any) -> "ProviderRetryManager":
        """Build from a ``RetryConfig`` section."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            reset_after=config.reset_after_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self._base_delay * (2 ** (attempt - 1))

    def state(self, provider: str) -> ProviderRetryState:
        return replace(self._states.get(provider.lower(), ProviderRetryState()))

    def needs_reconnection(self, provider: str) -> bool:
        state = self._states.get(provider.lower())
        return state is not None and state.reconnect_required

    def reset(self, provider: str) -> None:
        """Forget a provider's retry state (after the user reconnects it)."""
        self._states.pop(provider.lower(), None)
        logger.info("Reset retry state for %s", provider)

    def reset_all(self) -> None:
        self._states.clear()

    async def run(self, provider: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` with retries.

        Returns:
            The operation's result, or None when a run for this provider is
            already in progress.

        Raises:
            The last exception once the failure is permanent or attempts run out.
        """
        key = provider.lower()
        state = self._states.setdefault(key, ProviderRetryState())

        now = self._clock()
        if state.last_attempt_at is not None and now - state.last_attempt_at > self._reset_after:
            state.attempts = 0
            state.reconnect_required = False

        if state.in_progress:
            logger.info("Already retrying %s sync, skipping duplicate attempt", provider)
            return None

        state.in_progress = True
        state.last_attempt_at = now
        try:
            for attempt in range(1, self._max_attempts + 1):
                state.status = f"Syncing (attempt {attempt}/{self._max_attempts})"
                try:
                    result = await operation()
                except Exception as exc:
                    state.attempts = attempt
                    if is_permanent_failure(exc):
                        logger.error("%s sync failed permanently: %s", provider, exc)
                        state.reconnect_required = True
                        state.status = "Reconnection required"
                        raise
                    if attempt == self._max_attempts:
                        logger.error(
                            "%s sync failed after %d attempts: %s", provider, attempt, exc
                        )
                        state.reconnect_required = True
                        state.status = "Reconnection required"
                        raise
                    delay = self.delay_for(attempt)
                    logger.warning(
                        "%s sync failed (attempt %d/%d), retrying in %.1fs: %s",
                        provider,
                        attempt,
                        self._max_attempts,
                        delay,
                        exc,
                    )
                    state.status = f"Retry in {delay:.0f}s"
                    await self._sleep(delay)
                else:
                    if attempt > 1:
                        logger.info("%s sync succeeded on attempt %d", provider, attempt)
                    state.attempts = 0
                    state.reconnect_required = False
                    state.status = None
                    return result
        finally:
            state.in_progress = False
