"""Foreground sync scheduler.

Decides *when* a sync pass runs and makes sure at most one runs at a time:

    app launch   → one pass
    foreground   → one pass, then a pass every ``periodic_interval`` seconds
    background   → periodic timer stopped
    sign-out     → periodic timer stopped, running pass cancelled
    manual       → forced pass (ignores the throttle)

A pass refreshes health authorization, runs the collaborators (calendar
providers, prefetch), then the health pipeline.  Failures are logged and
reported; they never leave the scheduler stuck in the syncing state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from alltime.errors import AuthError, AuthorizationDenied
from alltime.health.pipeline import HealthSyncPipeline, HealthSyncResult
from alltime.store import InMemoryKeyValueStore, KeyValueStore
from alltime.sync.collaborators import SyncCollaborator

logger = logging.getLogger("alltime.sync.scheduler")

LAST_SYNC_TIME_KEY = "last_sync_time"

# Health outcomes that do not make a pass fail
_HEALTH_OK = frozenset({"success", "skipped", "unavailable", "denied"})


@dataclass
class SyncState:
    """Observable scheduler state.

    Attributes:
        last_sync_at:    When the last fully successful pass finished (None = never).
        is_syncing:      True while a pass runs.
        periodic_active: True while the periodic timer is armed.
    """

    last_sync_at: datetime | None = None
    is_syncing: bool = False
    periodic_active: bool = False


@dataclass
class SyncReport:
    """Result of one sync pass.

    Attributes:
        reason:        Trigger ('app_launch', 'foreground', 'periodic', 'manual').
        status:        'success', 'partial', 'error'.
        collaborators: Collaborator name → 'success' / 'error'.
        health:        Health pipeline outcome (None when not run).
        errors:        Error messages collected during the pass.
        started_at:    UTC start time.
        finished_at:   UTC end time.
    """

    reason: str
    status: str = "success"
    collaborators: dict[str, str] = field(default_factory=dict)
    health: HealthSyncResult | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None


class SyncScheduler:
    """Run sync passes on lifecycle events and on a periodic timer.

    Usage::

        scheduler = SyncScheduler(
            health_pipeline=pipeline,
            collaborators=[CalendarSyncCollaborator(client, "google")],
            store=store,
            is_authenticated=session.is_signed_in,
            on_auth_error=session.expire,
        )
        await scheduler.on_app_launch()
        await scheduler.on_foreground()
    """

    def __init__(
        self,
        health_pipeline: HealthSyncPipeline | None = None,
        collaborators: Sequence[SyncCollaborator] = (),
        store: KeyValueStore | None = None,
        is_authenticated: Callable[[], bool] | None = None,
        on_auth_error: Callable[[AuthError], Any] | None = None,
        periodic_interval: float = 900.0,
        min_interval: float = 300.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            health_pipeline:   Health sync pipeline (None = no health sync).
            collaborators:     Other sync work, run in order on every pass.
            store:             Persists the last successful sync time.
            is_authenticated:  Returns False when no user is signed in.
            on_auth_error:     Called (sync or async) when a pass hits AuthError.
            periodic_interval: Seconds between periodic passes.
            min_interval:      Minimum seconds between non-forced passes.
            clock:             Returns the current aware datetime.
        """
        if periodic_interval <= 0:
            raise ValueError("periodic_interval must be positive")
        self._health = health_pipeline
        self._collaborators = list(collaborators)
        self._store = store if store is not None else InMemoryKeyValueStore()
        self._is_authenticated = is_authenticated or (lambda: True)
        self._on_auth_error = on_auth_error
        self._periodic_interval = periodic_interval
        self._min_interval = min_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._state = SyncState(last_sync_at=self._store.get_datetime(LAST_SYNC_TIME_KEY))
        self._periodic_task: asyncio.Task | None = None
        self._pass_task: asyncio.Task | None = None
        # Bumped on every start/stop; a tick from an older generation never runs.
        self._generation = 0
        self._last_report: SyncReport | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return replace(self._state)

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    @property
    def collaborators(self) -> list[SyncCollaborator]:
        return list(self._collaborators)

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    async def on_app_launch(self) -> SyncReport | None:
        return await self.trigger("app_launch")

    async def on_foreground(self) -> SyncReport | None:
        report = await self.trigger("foreground")
        if self._is_authenticated():
            self.start_periodic()
        return report

    def on_background(self) -> None:
        self.stop_periodic()

    def on_sign_out(self) -> None:
        self.stop_periodic()
        if self._pass_task is not None and not self._pass_task.done():
            logger.info("Sign-out: cancelling running sync pass")
            self._pass_task.cancel()

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    def start_periodic(self) -> None:
        """Arm the periodic timer (no-op when already armed)."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        self._generation += 1
        self._periodic_task = asyncio.get_running_loop().create_task(
            self._periodic_loop(self._generation), name="sync:periodic"
        )
        self._state.periodic_active = True
        logger.debug("Periodic sync every %.0fs", self._periodic_interval)

    def stop_periodic(self) -> None:
        """Disarm the periodic timer.  Takes effect before this call returns."""
        self._generation += 1
        task, self._periodic_task = self._periodic_task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Periodic sync stopped")
        self._state.periodic_active = False

    async def _periodic_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self._periodic_interval)
            if generation != self._generation:
                return
            await self.trigger("periodic")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _throttled(self) -> bool:
        last = self._state.last_sync_at
        if last is None or self._min_interval <= 0:
            return False
        return (self._clock() - last).total_seconds() < self._min_interval

    async def trigger(self, reason: str, force: bool = False) -> SyncReport | None:
        """Run one pass unless one is running, nobody is signed in, or it is too soon.

        Args:
            reason: Trigger name, for logs and the report.
            force:  Ignore the ``min_interval`` throttle.

        Returns:
            The SyncReport, or None when the trigger was a no-op.
        """
        if self._state.is_syncing:
            logger.debug("Sync already running, ignoring '%s' trigger", reason)
            return None
        if not self._is_authenticated():
            logger.debug("Not authenticated, ignoring '%s' trigger", reason)
            return None
        if not force and self._throttled():
            logger.debug("Last sync too recent, ignoring '%s' trigger", reason)
            return None

        self._state.is_syncing = True
        task = asyncio.get_running_loop().create_task(
            self._run_pass(reason), name=f"sync:{reason}"
        )
        task.add_done_callback(self._on_pass_done)
        self._pass_task = task
        try:
            # Shielded: a caller going away (e.g. the periodic timer stopping)
            # does not abort the pass; only on_sign_out() does.
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                return None
            raise

    def _on_pass_done(self, task: asyncio.Task) -> None:
        # A pass cancelled before its first step never reaches _run_pass's finally.
        if self._pass_task is task or self._pass_task is None:
            self._pass_task = None
            self._state.is_syncing = False

    async def sync_now(self) -> SyncReport | None:
        """Manual (pull-to-refresh) pass, ignoring the throttle."""
        return await self.trigger("manual", force=True)

    async def _run_pass(self, reason: str) -> SyncReport:
        report = SyncReport(reason=reason, started_at=self._clock())
        auth_error: AuthError | None = None
        logger.info("Sync pass started (%s)", reason)

        try:
            if self._health is not None:
                try:
                    await self._health.refresh_authorization()
                except Exception as exc:
                    logger.warning("Health authorization refresh failed: %s", exc)

            for collaborator in self._collaborators:
                try:
                    await collaborator.sync()
                    report.collaborators[collaborator.name] = "success"
                except AuthError as exc:
                    report.collaborators[collaborator.name] = "error"
                    report.errors.append(f"{collaborator.name}: {exc}")
                    auth_error = exc
                    break
                except Exception as exc:
                    logger.warning("Sync collaborator %s failed: %s", collaborator.name, exc)
                    report.collaborators[collaborator.name] = "error"
                    report.errors.append(f"{collaborator.name}: {exc}")

            if self._health is not None and auth_error is None:
                report.health, auth_error = await self._run_health(self._health, report)

            report.status = _overall_status(report)
            if report.status == "success":
                now = self._clock()
                self._state.last_sync_at = now
                self._store.set_datetime(LAST_SYNC_TIME_KEY, now)
        except asyncio.CancelledError:
            logger.info("Sync pass (%s) cancelled", reason)
            raise
        finally:
            report.finished_at = self._clock()
            self._state.is_syncing = False

        if report.status == "success":
            logger.info("Sync pass (%s) complete", reason)
        else:
            logger.error(
                "Sync pass (%s) finished with status=%s: %s",
                reason,
                report.status,
                "; ".join(report.errors[:3]),
            )

        self._last_report = report
        if auth_error is not None:
            await self._handle_auth_error(auth_error)
        return report

    @staticmethod
    async def _run_health(
        pipeline: HealthSyncPipeline, report: SyncReport
    ) -> tuple[HealthSyncResult, AuthError | None]:
        try:
            return await pipeline.run(), None
        except AuthorizationDenied as exc:
            logger.info("Health sync not possible: %s", exc)
            result = HealthSyncResult(
                status="denied", error=str(exc), authorization=pipeline.authorization
            )
            return result, None
        except AuthError as exc:
            report.errors.append(f"health: {exc}")
            return HealthSyncResult(status="error", error=str(exc)), exc
        except Exception as exc:
            logger.warning("Health sync failed: %s", exc)
            report.errors.append(f"health: {exc}")
            return HealthSyncResult(status="error", error=str(exc)), None

    async def _handle_auth_error(self, exc: AuthError) -> None:
        logger.warning("Authentication failed during sync, stopping periodic sync: %s", exc)
        self.stop_periodic()
        if self._on_auth_error is None:
            return
        try:
            result = self._on_auth_error(exc)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_auth_error callback failed")

    async def shutdown(self) -> None:
        """Stop the timer and cancel any running pass."""
        self.stop_periodic()
        task, self._pass_task = self._pass_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Sync scheduler stopped")


def _overall_status(report: SyncReport) -> str:
    failures = len(report.errors)
    if not failures:
        return "success"
    successes = sum(1 for s in report.collaborators.values() if s == "success")
    if report.health is not None and report.health.status in _HEALTH_OK:
        successes += 1
    return "partial" if successes else "error"
