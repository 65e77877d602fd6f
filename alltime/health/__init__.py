"""Health data authorization and sync.

Modules:
    types         — HealthKit type identifiers, authorization classification
    authorization — Permission resolution and the once-per-session prompt
    models        — Raw samples and the daily metrics schema
    aggregation   — Per-day aggregation, sleep attribution
    pipeline      — Incremental sync to the backend
"""

from alltime.health.authorization import HealthAuthorizer, HealthPermissionSource
from alltime.health.models import DailyHealthMetrics, HealthSample, SleepStage
from alltime.health.types import (
    REQUIRED_TYPES,
    AuthorizationKind,
    HealthAuthorizationState,
    HealthTypeId,
    PermissionStatus,
    classify_authorization,
)

__all__ = [
    "REQUIRED_TYPES",
    "AuthorizationKind",
    "DailyHealthMetrics",
    "HealthAuthorizationState",
    "HealthAuthorizer",
    "HealthPermissionSource",
    "HealthSample",
    "HealthTypeId",
    "PermissionStatus",
    "SleepStage",
    "classify_authorization",
]
