"""Process-wide wiring of the sync core.

One ``SyncRuntime`` per process owns the cache, the deduplicator, the
coordinator, the backend client and the scheduler.  Build it at startup,
hand it to whatever needs it, and shut it down on exit::

    async with lifespan(permission_source, healthkit) as runtime:
        await runtime.scheduler.on_app_launch()
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, AsyncGenerator, Callable, Sequence
from zoneinfo import ZoneInfo

import httpx

from alltime.api.client import (
    DAILY_SUMMARY_ENDPOINT,
    HEALTH_INSIGHTS_ENDPOINT,
    BackendClient,
)
from alltime.config import Settings, get_settings
from alltime.config_loader import SyncConfig, get_sync_config, load_sync_config
from alltime.errors import AuthError
from alltime.freshness.cache import FreshnessCache
from alltime.freshness.coordinator import StaleWhileRevalidate
from alltime.freshness.dedup import RequestDeduplicator
from alltime.health.authorization import HealthAuthorizer, HealthPermissionSource
from alltime.health.pipeline import HealthDataSource, HealthSyncPipeline
from alltime.store import InMemoryKeyValueStore, KeyValueStore
from alltime.sync.collaborators import (
    CalendarSyncCollaborator,
    PrefetchCollaborator,
    SyncCollaborator,
)
from alltime.sync.retry import ProviderRetryManager
from alltime.sync.scheduler import SyncScheduler

logger = logging.getLogger("alltime")

CALENDAR_PROVIDERS = ("google", "microsoft")
INSIGHTS_PREFETCH_DAYS = 7


def configure_logging(level: str | int = logging.INFO) -> None:
    """Install the process-wide log handler.  Call once from the host app."""
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def log_level_for(settings: Settings) -> str:
    """Effective log level: ``debug`` forces DEBUG, else ``log_level``."""
    return "DEBUG" if settings.debug else settings.log_level.upper()


@dataclass
class SyncRuntime:
    """Every long-lived sync component, owned by one object."""

    settings: Settings
    config: SyncConfig
    cache: FreshnessCache
    deduplicator: RequestDeduplicator
    coordinator: StaleWhileRevalidate
    client: BackendClient
    authorizer: HealthAuthorizer
    pipeline: HealthSyncPipeline
    scheduler: SyncScheduler
    calendar_retry: ProviderRetryManager

    async def sign_out(self) -> None:
        """Drop everything tied to the signed-in user."""
        self.scheduler.on_sign_out()
        await self.coordinator.aclose()
        self.deduplicator.cancel_all()
        self.cache.clear()
        self.authorizer.reset_session()
        self.pipeline.reset()
        self.calendar_retry.reset_all()
        logger.info("Signed out: sync state cleared")

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.coordinator.aclose()
        self.deduplicator.cancel_all()
        await self.client.aclose()
        logger.info("AllTime sync runtime shut down")


def default_collaborators(
    client: BackendClient,
    coordinator: StaleWhileRevalidate,
    tz: ZoneInfo,
    retry: ProviderRetryManager | None = None,
) -> list[SyncCollaborator]:
    """Calendar providers plus a prefetch of today's summary and recent insights."""

    def _today() -> date:
        return datetime.now(tz).date()

    def _summary_params() -> dict[str, Any]:
        return {"date": _today()}

    def _insights_params() -> dict[str, Any]:
        today = _today()
        return {
            "start_date": today - timedelta(days=INSIGHTS_PREFETCH_DAYS - 1),
            "end_date": today,
        }

    collaborators: list[SyncCollaborator] = [
        CalendarSyncCollaborator(client, provider, retry) for provider in CALENDAR_PROVIDERS
    ]
    collaborators.append(
        PrefetchCollaborator(
            coordinator,
            client,
            [
                (DAILY_SUMMARY_ENDPOINT, _summary_params),
                (HEALTH_INSIGHTS_ENDPOINT, _insights_params),
            ],
        )
    )
    return collaborators


def build_runtime(
    settings: Settings,
    permission_source: HealthPermissionSource,
    health_source: HealthDataSource,
    store: KeyValueStore | None = None,
    collaborators: Sequence[SyncCollaborator] | None = None,
    is_authenticated: Callable[[], bool] | None = None,
    on_auth_error: Callable[[AuthError], Any] | None = None,
    http_client: httpx.AsyncClient | None = None,
    token_provider: Callable[[], str | None] | None = None,
) -> SyncRuntime:
    """Wire up the sync core from settings and the device adapters.

    Args:
        settings:          Environment settings.
        permission_source: Device health permission API.
        health_source:     Device health store.
        store:             Persistent scalars (defaults to process memory).
        collaborators:     Scheduler collaborators (defaults to calendar + prefetch).
        is_authenticated:  Session check for the scheduler.
        on_auth_error:     Called when a sync pass hits AuthError.
        http_client:       Optional pre-configured httpx client (for testing).
        token_provider:    Returns the current bearer token.

    Returns:
        A ready SyncRuntime; nothing runs until the scheduler is triggered.
    """
    config = (
        load_sync_config(settings.sync_config_path)
        if settings.sync_config_path
        else get_sync_config()
    )
    tz = ZoneInfo(settings.timezone)
    store = store if store is not None else InMemoryKeyValueStore()

    cache = FreshnessCache.from_config(config.cache)
    deduplicator = RequestDeduplicator()
    coordinator = StaleWhileRevalidate(cache, deduplicator)
    client = BackendClient.from_settings(
        settings, token_provider=token_provider, http_client=http_client
    )
    authorizer = HealthAuthorizer(
        permission_source,
        required_types=config.health.required_types,
        recheck_delay=config.health.authorization_recheck_delay_seconds,
    )
    pipeline = HealthSyncPipeline(
        authorizer,
        health_source,
        client,
        store,
        tz,
        config=config.health,
        cache=cache,
    )
    calendar_retry = ProviderRetryManager.from_config(config.calendar_retry)
    if collaborators is None:
        collaborators = default_collaborators(client, coordinator, tz, calendar_retry)

    scheduler = SyncScheduler(
        health_pipeline=pipeline,
        collaborators=collaborators,
        store=store,
        is_authenticated=is_authenticated,
        on_auth_error=on_auth_error,
        periodic_interval=config.scheduler.periodic_interval_seconds,
        min_interval=config.scheduler.min_interval_seconds,
    )
    logger.info(
        "Built %s sync runtime v%s [%s], config v%s, tz=%s",
        settings.app_name,
        settings.app_version,
        settings.environment,
        config.version,
        settings.timezone,
    )
    return SyncRuntime(
        settings=settings,
        config=config,
        cache=cache,
        deduplicator=deduplicator,
        coordinator=coordinator,
        client=client,
        authorizer=authorizer,
        pipeline=pipeline,
        scheduler=scheduler,
        calendar_retry=calendar_retry,
    )


@asynccontextmanager
async def lifespan(
    permission_source: HealthPermissionSource,
    health_source: HealthDataSource,
    settings: Settings | None = None,
    **kwargs: Any,
) -> AsyncGenerator[SyncRuntime, None]:
    """Startup / shutdown for a SyncRuntime."""
    settings = settings or get_settings()
    configure_logging(log_level_for(settings))
    runtime = build_runtime(settings, permission_source, health_source, **kwargs)
    try:
        yield runtime
    finally:
        await runtime.shutdown()
