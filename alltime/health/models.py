"""Health sample and daily-metric models.

``HealthSample`` is what the device data source returns: one raw reading.
``DailyHealthMetrics`` is the backend schema for ``POST /api/v1/health/daily``;
the server upserts on ``date``, so re-sending a day is always safe.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from alltime.health.types import HealthTypeId


class SleepStage:
    """HealthKit sleep-analysis category values."""

    IN_BED = "HKCategoryValueSleepAnalysisInBed"
    ASLEEP_UNSPECIFIED = "HKCategoryValueSleepAnalysisAsleepUnspecified"
    AWAKE = "HKCategoryValueSleepAnalysisAwake"
    ASLEEP_CORE = "HKCategoryValueSleepAnalysisAsleepCore"
    ASLEEP_DEEP = "HKCategoryValueSleepAnalysisAsleepDeep"
    ASLEEP_REM = "HKCategoryValueSleepAnalysisAsleepREM"

    #: Stages that count as sleep ("In Bed" and "Awake" do not).
    ASLEEP: frozenset[str] = frozenset(
        {ASLEEP_UNSPECIFIED, ASLEEP_CORE, ASLEEP_DEEP, ASLEEP_REM}
    )


@dataclass(frozen=True)
class HealthSample:
    """One raw reading from the device health store.

    Attributes:
        type_id:  Metric type.
        start:    Timezone-aware start of the sample.
        end:      Timezone-aware end of the sample.
        value:    Quantity in the canonical unit (count, kcal, minutes, bpm, ms).
                  Ignored for sleep and workout samples.
        category: Sleep stage for SLEEP_ANALYSIS samples.
        source:   Recording device/app name (Apple Watch, iPhone...).
    """

    type_id: HealthTypeId
    start: datetime
    end: datetime
    value: float = 0.0
    category: str | None = None
    source: str | None = None

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


class HealthBase(BaseModel):
    """Base model with shared config for backend health schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class DailyHealthMetrics(HealthBase):
    """One local calendar day of aggregated metrics.

    Every metric is optional: a day with no samples is still sent (all
    fields null) so the backend can tell "no data" from "not synced".
    """

    date: date
    steps: int | None = Field(default=None, ge=0)
    active_minutes: int | None = Field(default=None, ge=0, le=1440)
    stand_minutes: int | None = Field(default=None, ge=0, le=1440)
    active_energy_burned: float | None = Field(default=None, ge=0)
    resting_heart_rate: float | None = None
    hrv: float | None = None
    sleep_minutes: int | None = Field(default=None, ge=0)
    sleep_quality_score: float | None = Field(default=None, ge=0, le=100)
    workouts_count: int | None = Field(default=None, ge=0)

    @property
    def has_data(self) -> bool:
        return any(
            value is not None
            for name, value in self
            if name != "date"
        )

    def to_payload(self) -> dict[str, Any]:
        """Snake_case JSON body with an ISO date, nulls included."""
        return self.model_dump(mode="json")


class SubmitHealthMetricsResponse(HealthBase):
    """Backend acknowledgement of a daily-metrics upsert."""

    status: str
    records_upserted: int = Field(
        default=0,
        validation_alias=AliasChoices("recordsUpserted", "records_upserted"),
    )
