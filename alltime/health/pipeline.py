"""Incremental health data sync: device store → per-day records → backend.

One pass:
1. Resolve authorization (UNAVAILABLE → nothing to do, DENIED → terminal)
2. Compute the day range from the persisted last sync date
3. Query every required type once for the whole range
4. Aggregate one DailyHealthMetrics per local calendar day
5. Submit; the backend upserts on date, so overlapping ranges are harmless
6. Persist last_sync_date only after the backend confirms

A failed pass leaves last_sync_date where it was, so the same range is
re-sent on the next trigger.  Nothing is lost and nothing is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Iterable, Protocol, Sequence

from alltime.config_loader import HealthConfig
from alltime.errors import AuthorizationDenied, ServerError
from alltime.freshness.cache import FreshnessCache
from alltime.freshness.keys import day_key, payload_content_hash
from alltime.health.aggregation import aggregate_range, query_window
from alltime.health.authorization import HealthAuthorizer
from alltime.health.models import (
    DailyHealthMetrics,
    HealthSample,
    SubmitHealthMetricsResponse,
)
from alltime.health.types import AuthorizationKind, HealthAuthorizationState, HealthTypeId
from alltime.store import KeyValueStore

logger = logging.getLogger("alltime.health.pipeline")

LAST_SYNC_DATE_KEY = "health_last_sync_date"

#: Cache endpoint for aggregated records, keyed per day.
HEALTH_DAILY_CACHE_ENDPOINT = "health/daily"


class HealthDataSource(ABC):
    """Device health store (HealthKit on iOS)."""

    @abstractmethod
    async def query_samples(
        self, type_id: HealthTypeId, start: datetime, end: datetime
    ) -> Iterable[HealthSample]:
        """Return samples of ``type_id`` that start within [start, end).

        An empty result is ambiguous: no data, or read access withheld.
        """


class HealthMetricsSubmitter(Protocol):
    async def submit_daily_metrics(
        self, records: Sequence[DailyHealthMetrics]
    ) -> SubmitHealthMetricsResponse: ...


@dataclass(frozen=True)
class SyncRange:
    """Inclusive range of local calendar days."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"SyncRange end {self.end} is before start {self.start}")

    def days(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(len(self))]

    def __len__(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def compute_sync_range(
    last_sync_date: date | None, today: date, initial_days: int = 14
) -> SyncRange:
    """Return the days the next pass must cover.

    First sync: the trailing ``initial_days`` days including today.
    Later syncs: from the last synced day through today.  The last synced
    day is included because it was probably still in progress back then.
    A last sync date in the future (clock change) clamps to today.
    """
    if initial_days < 1:
        raise ValueError("initial_days must be >= 1")
    if last_sync_date is None:
        return SyncRange(today - timedelta(days=initial_days - 1), today)
    return SyncRange(min(last_sync_date, today), today)


@dataclass
class HealthSyncResult:
    """Outcome of one health sync pass.

    Attributes:
        status:           'success', 'skipped', 'unavailable', 'denied', 'error'.
        sync_range:       Days covered (None if the pass never got that far).
        records:          Aggregated records that were (or would have been) sent.
        records_upserted: Count acknowledged by the backend.
        authorization:    Authorization state seen by the pass.
        error:            Error message for 'denied' / 'error'.
        finished_at:      When the pass ended.
    """

    status: str
    sync_range: SyncRange | None = None
    records: list[DailyHealthMetrics] = field(default_factory=list)
    records_upserted: int = 0
    authorization: HealthAuthorizationState | None = None
    error: str | None = None
    finished_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class HealthSyncPipeline:
    """Authorize, aggregate and submit health data incrementally.

    Usage::

        pipeline = HealthSyncPipeline(authorizer, healthkit, client, store, tz)
        result = await pipeline.run()
    """

    def __init__(
        self,
        authorizer: HealthAuthorizer,
        data_source: HealthDataSource,
        submitter: HealthMetricsSubmitter,
        store: KeyValueStore,
        tz: tzinfo,
        config: HealthConfig | None = None,
        cache: FreshnessCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            authorizer:  Resolves health permissions.
            data_source: Device health store.
            submitter:   Backend endpoint for daily records (BackendClient).
            store:       Persistent store holding the last sync date.
            tz:          User timezone; defines local calendar days.
            config:      Health section of the sync config.
            cache:       Optional shared cache; aggregated days are written to it.
            clock:       Returns the current aware datetime (injectable for tests).
        """
        self._authorizer = authorizer
        self._source = data_source
        self._submitter = submitter
        self._store = store
        self._tz = tz
        self._config = config or HealthConfig()
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._running = False
        self._rejected_payload_hash: str | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def last_sync_date(self) -> date | None:
        return self._store.get_date(LAST_SYNC_DATE_KEY)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def authorization(self) -> HealthAuthorizationState | None:
        return self._authorizer.state

    def today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def reset(self) -> None:
        """Forget the last sync date (sign-out / account switch)."""
        self._store.delete(LAST_SYNC_DATE_KEY)
        self._rejected_payload_hash = None

    async def refresh_authorization(self) -> HealthAuthorizationState:
        """Re-resolve permissions; the user may have changed them in Settings."""
        return await self._authorizer.resolve()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run(self) -> HealthSyncResult:
        """Sync everything since the last confirmed sync.

        Raises:
            AuthorizationDenied: Every required type is denied.
            NetworkError, ServerError, AuthError: Submission failed.
        """
        sync_range = compute_sync_range(
            self.last_sync_date, self.today(), self._config.initial_sync_days
        )
        return await self._sync(sync_range)

    async def sync_last_n_days(self, days: int) -> HealthSyncResult:
        """Sync the trailing ``days`` days regardless of the last sync date."""
        if days < 1:
            raise ValueError("days must be >= 1")
        today = self.today()
        return await self._sync(SyncRange(today - timedelta(days=days - 1), today))

    async def _sync(self, sync_range: SyncRange) -> HealthSyncResult:
        if self._running:
            logger.info("Health sync already running, skipping %s", sync_range)
            return HealthSyncResult(status="skipped", sync_range=sync_range)

        self._running = True
        try:
            return await self._run_pass(sync_range)
        finally:
            self._running = False

    async def _run_pass(self, sync_range: SyncRange) -> HealthSyncResult:
        state = await self._authorizer.resolve()
        if state.kind == AuthorizationKind.UNAVAILABLE:
            return HealthSyncResult(
                status="unavailable", sync_range=sync_range, authorization=state
            )
        if state.kind == AuthorizationKind.DENIED:
            raise AuthorizationDenied(state.denied_types)

        logger.info(
            "Health sync %s (%d days, authorization=%s)", sync_range, len(sync_range), state
        )

        samples = await self._collect_samples(sync_range)
        records = aggregate_range(
            sync_range.days(), samples, self._tz, self._config.sleep
        )
        if self._cache is not None:
            for record in records:
                self._cache.set(day_key(HEALTH_DAILY_CACHE_ENDPOINT, record.date), record)

        payload_hash = payload_content_hash([r.to_payload() for r in records])
        if payload_hash == self._rejected_payload_hash:
            logger.warning(
                "Not re-sending health records for %s: identical payload was rejected",
                sync_range,
            )
            return HealthSyncResult(
                status="skipped",
                sync_range=sync_range,
                records=records,
                authorization=state,
            )

        try:
            response = await self._submitter.submit_daily_metrics(records)
        except ServerError as exc:
            if exc.permanent:
                self._rejected_payload_hash = payload_hash
            logger.error("Health submission for %s failed: %s", sync_range, exc)
            raise

        self._rejected_payload_hash = None
        self._store.set_date(LAST_SYNC_DATE_KEY, sync_range.end)
        logger.info(
            "Health sync %s complete: %d records upserted, last_sync_date=%s",
            sync_range,
            response.records_upserted,
            sync_range.end,
        )
        return HealthSyncResult(
            status="success",
            sync_range=sync_range,
            records=records,
            records_upserted=response.records_upserted,
            authorization=state,
        )

    async def _collect_samples(self, sync_range: SyncRange) -> list[HealthSample]:
        start, end = query_window(
            sync_range.start, sync_range.end, self._tz, self._config.sleep
        )
        per_type = await asyncio.gather(
            *(self._query_type(t, start, end) for t in self._authorizer.required_types)
        )
        samples = [s for batch in per_type for s in batch]
        logger.debug("Collected %d samples for %s", len(samples), sync_range)
        return samples

    async def _query_type(
        self, type_id: HealthTypeId, start: datetime, end: datetime
    ) -> list[HealthSample]:
        # A failing or withheld type is treated as "no data"; other types still sync.
        try:
            return list(await self._source.query_samples(type_id, start, end))
        except Exception as exc:
            logger.warning("Query for %s failed, treating as empty: %s", type_id.short_name, exc)
            return []
