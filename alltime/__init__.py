"""AllTime client sync core.

Keeps calendar and health data fresh on the client: an in-memory freshness
cache, single-flight request deduplication, stale-while-revalidate loading,
a lifecycle-driven sync scheduler and the incremental health sync pipeline.

Subpackages:
    freshness/ — Cache, request deduplicator, stale-while-revalidate coordinator
    health/    — Health types, authorization, per-day aggregation, sync pipeline
    sync/      — Sync scheduler and its collaborators
    api/       — Backend HTTP client

Core modules:
    config        — Environment settings (ALLTIME_* variables)
    config_loader — Load/validate/hot-reload sync_config.yaml
    errors        — Sync error taxonomy
    store         — Persistent key-value store for sync scalars
    runtime       — Process-wide wiring and lifecycle
"""

from alltime.errors import (
    AuthError,
    AuthorizationDenied,
    NetworkError,
    ReentrantRequestError,
    ServerError,
    SyncError,
)

__all__ = [
    "SyncError",
    "NetworkError",
    "AuthError",
    "ServerError",
    "AuthorizationDenied",
    "ReentrantRequestError",
]
