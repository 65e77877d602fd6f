"""Health data type identifiers and authorization state.

The device permission API answers per type.  ``classify_authorization``
collapses those answers into one ``HealthAuthorizationState``, with one rule
that must never bend: a single granted type means the user is *not* denied.
An earlier client marked users as denied whenever any type was denied, which
stopped syncing for everyone who declined just one metric.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class HealthTypeId(str, Enum):
    """HealthKit identifiers of the metric types the sync reads."""

    STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
    ACTIVE_ENERGY_BURNED = "HKQuantityTypeIdentifierActiveEnergyBurned"
    EXERCISE_TIME = "HKQuantityTypeIdentifierAppleExerciseTime"
    STAND_TIME = "HKQuantityTypeIdentifierAppleStandTime"
    RESTING_HEART_RATE = "HKQuantityTypeIdentifierRestingHeartRate"
    HRV_SDNN = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
    SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"
    WORKOUT = "HKWorkoutTypeIdentifier"

    @property
    def short_name(self) -> str:
        return self.name.lower()


#: Every type requested in the single authorization prompt.
REQUIRED_TYPES: tuple[HealthTypeId, ...] = tuple(HealthTypeId)


class PermissionStatus(str, Enum):
    """Per-type answer from the device permission API."""

    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class AuthorizationKind(str, Enum):
    UNAVAILABLE = "unavailable"
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    PARTIALLY_AUTHORIZED = "partially_authorized"
    DENIED = "denied"


@dataclass(frozen=True)
class HealthAuthorizationState:
    """Collapsed authorization state for the required health types.

    Attributes:
        kind:          Overall classification.
        missing_types: Types not granted (only set for PARTIALLY_AUTHORIZED).
        statuses:      Raw per-type answers — a UI hint, never a read gate.
    """

    kind: AuthorizationKind
    missing_types: frozenset[HealthTypeId] = frozenset()
    statuses: Mapping[HealthTypeId, PermissionStatus] = field(default_factory=dict)

    @classmethod
    def unavailable(cls) -> "HealthAuthorizationState":
        return cls(AuthorizationKind.UNAVAILABLE)

    @property
    def is_terminal(self) -> bool:
        """True when only the user (or the device) can change the outcome."""
        return self.kind in (AuthorizationKind.UNAVAILABLE, AuthorizationKind.DENIED)

    @property
    def allows_read_attempt(self) -> bool:
        """Optimistic read policy: try reading unless nothing can succeed.

        Read grants are hidden by the platform, so NOT_DETERMINED and
        PARTIALLY_AUTHORIZED still attempt every read.
        """
        return not self.is_terminal

    @property
    def denied_types(self) -> frozenset[HealthTypeId]:
        return frozenset(t for t, s in self.statuses.items() if s == PermissionStatus.DENIED)

    def __str__(self) -> str:
        if self.kind == AuthorizationKind.PARTIALLY_AUTHORIZED:
            missing = ", ".join(sorted(t.short_name for t in self.missing_types))
            return f"partially_authorized(missing={{{missing}}})"
        return self.kind.value


def classify_authorization(
    statuses: Mapping[HealthTypeId, PermissionStatus],
) -> HealthAuthorizationState:
    """Collapse per-type permission answers into one state.

    Rules, in order:
        all granted           → AUTHORIZED
        at least one granted  → PARTIALLY_AUTHORIZED(missing = every other type)
        every type denied     → DENIED
        anything else         → NOT_DETERMINED

    Args:
        statuses: Answer for each required type.

    Returns:
        The collapsed HealthAuthorizationState.

    Raises:
        ValueError: If no statuses were given.
    """
    if not statuses:
        raise ValueError("classify_authorization() needs at least one type status")

    snapshot = dict(statuses)
    granted = {t for t, s in snapshot.items() if s == PermissionStatus.GRANTED}

    if len(granted) == len(snapshot):
        return HealthAuthorizationState(AuthorizationKind.AUTHORIZED, statuses=snapshot)

    if granted:
        missing = frozenset(t for t in snapshot if t not in granted)
        return HealthAuthorizationState(
            AuthorizationKind.PARTIALLY_AUTHORIZED,
            missing_types=missing,
            statuses=snapshot,
        )

    if all(s == PermissionStatus.DENIED for s in snapshot.values()):
        return HealthAuthorizationState(AuthorizationKind.DENIED, statuses=snapshot)

    return HealthAuthorizationState(AuthorizationKind.NOT_DETERMINED, statuses=snapshot)
