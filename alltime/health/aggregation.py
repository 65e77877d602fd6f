"""Per-day aggregation of raw health samples into DailyHealthMetrics.

Pure functions — no I/O.  A "day" is local midnight to the next local
midnight in the user's timezone.

Quantity samples are attributed to the day they start in.  Sleep is the
exception: a night belongs to the day it *ends*, so the sleep window for a
day runs from the previous evening to early afternoon (defaults 18:00 → 14:00).
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Iterable, Mapping, Sequence

from alltime.config_loader import SleepConfig
from alltime.health.models import DailyHealthMetrics, HealthSample, SleepStage
from alltime.health.types import HealthTypeId

logger = logging.getLogger("alltime.health.aggregation")

# Metric type → DailyHealthMetrics field, for types that are summed per day
_SUMMED_FIELDS: dict[HealthTypeId, str] = {
    HealthTypeId.STEP_COUNT: "steps",
    HealthTypeId.EXERCISE_TIME: "active_minutes",
    HealthTypeId.STAND_TIME: "stand_minutes",
    HealthTypeId.ACTIVE_ENERGY_BURNED: "active_energy_burned",
}

# ... and for types that are averaged
_AVERAGED_FIELDS: dict[HealthTypeId, str] = {
    HealthTypeId.RESTING_HEART_RATE: "resting_heart_rate",
    HealthTypeId.HRV_SDNN: "hrv",
}

_INTEGER_FIELDS = {"steps", "active_minutes", "stand_minutes"}

# Minutes in a day; per-day minute totals never exceed it
_MINUTES_PER_DAY = 1440
_MINUTE_FIELDS = {"active_minutes", "stand_minutes"}

# Overlap above this fraction of the shorter sample marks a duplicate reading
_OVERLAP_RATIO = 0.5


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return [local midnight, next local midnight) for ``day``."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def sleep_window(day: date, tz: tzinfo, config: SleepConfig) -> tuple[datetime, datetime]:
    """Return the window whose sleep samples are attributed to ``day``."""
    midnight, _ = day_bounds(day, tz)
    return (
        midnight + timedelta(hours=config.window_start_hours),
        midnight + timedelta(hours=config.window_end_hours),
    )


def query_window(
    first_day: date, last_day: date, tz: tzinfo, config: SleepConfig
) -> tuple[datetime, datetime]:
    """Return one window covering every day in range, sleep windows included."""
    day_start, _ = day_bounds(first_day, tz)
    _, day_end = day_bounds(last_day, tz)
    sleep_start, _ = sleep_window(first_day, tz, config)
    _, sleep_end = sleep_window(last_day, tz, config)
    return min(day_start, sleep_start), max(day_end, sleep_end)


# ---------------------------------------------------------------------------
# Overlapping readings and sleep
# ---------------------------------------------------------------------------


def _is_duplicate_reading(a: HealthSample, b: HealthSample) -> bool:
    """True when ``a`` and ``b`` overlap by more than half of the shorter one."""
    overlap_start = max(a.start, b.start)
    overlap_end = min(a.end, b.end)
    if overlap_start >= overlap_end:
        return False
    shorter = min(a.duration_minutes, b.duration_minutes)
    if shorter <= 0:
        return False
    overlap = (overlap_end - overlap_start).total_seconds() / 60.0
    return overlap / shorter > _OVERLAP_RATIO


def _deduplicate(
    samples: Sequence[HealthSample],
    prefer: Callable[[HealthSample, HealthSample], bool],
    same_source_conflicts: bool,
) -> list[HealthSample]:
    result: list[HealthSample] = []
    for sample in sorted(samples, key=lambda s: s.start):
        replace_at: int | None = None
        keep = True
        for index, existing in enumerate(result):
            if not same_source_conflicts and sample.source == existing.source:
                continue
            if _is_duplicate_reading(sample, existing):
                if prefer(sample, existing):
                    replace_at = index
                else:
                    keep = False
                break

        if replace_at is not None:
            result[replace_at] = sample
        elif keep:
            result.append(sample)
    return result


def deduplicate_sleep_samples(samples: Sequence[HealthSample]) -> list[HealthSample]:
    """Drop overlapping readings of the same sleep from different devices.

    Two samples overlapping by more than half of the shorter one are the same
    sleep recorded twice (e.g. iPhone + Apple Watch); the longer one is kept.
    """
    return _deduplicate(
        samples,
        prefer=lambda new, old: new.duration_minutes > old.duration_minutes,
        same_source_conflicts=True,
    )


def deduplicate_quantity_samples(samples: Sequence[HealthSample]) -> list[HealthSample]:
    """Drop readings of the same activity recorded by more than one source.

    iPhone and Apple Watch both count steps during the same walk, and a
    workout app may log exercise minutes the Watch already logged.  A sample
    overlapping a sample from another source by more than half of the shorter
    one is the same activity; the larger reading is kept.  Samples from one
    source never duplicate each other.
    """
    return _deduplicate(
        samples,
        prefer=lambda new, old: new.value > old.value,
        same_source_conflicts=False,
    )


def group_sleep_sessions(
    samples: Sequence[HealthSample], gap_minutes: float
) -> list[list[HealthSample]]:
    """Split samples into sessions wherever the gap exceeds ``gap_minutes``."""
    sessions: list[list[HealthSample]] = []
    current: list[HealthSample] = []
    for sample in sorted(samples, key=lambda s: s.start):
        if current:
            gap = (sample.start - current[-1].end).total_seconds() / 60.0
            if gap > gap_minutes:
                sessions.append(current)
                current = []
        current.append(sample)
    if current:
        sessions.append(current)
    return sessions


def sleep_quality_score(hours: float) -> float:
    """Duration-based sleep quality score (0–100); 7–9 hours scores 100."""
    if 7 <= hours <= 9:
        return 100.0
    if 6 <= hours < 7:
        return 80.0 - (7 - hours) * 20
    if 9 < hours <= 10:
        return 100.0 - (hours - 9) * 10
    return max(0.0, 100.0 - abs(hours - 8) * 15)


def summarize_sleep(
    samples: Iterable[HealthSample],
    day: date,
    tz: tzinfo,
    config: SleepConfig,
) -> tuple[int | None, float | None]:
    """Total asleep minutes and quality score for the night ending on ``day``.

    Every session in the window counts, not only the longest one, so a brief
    wake-up in the night does not discard the rest of the night.
    """
    window_start, window_end = sleep_window(day, tz, config)
    asleep = [
        s
        for s in samples
        if s.category in SleepStage.ASLEEP
        and s.start >= window_start
        and s.end <= window_end
    ]
    if not asleep:
        return None, None

    sessions = group_sleep_sessions(
        deduplicate_sleep_samples(asleep), config.session_gap_minutes
    )
    total_minutes = sum(s.duration_minutes for session in sessions for s in session)
    logger.debug(
        "Sleep for %s: %.0f min across %d sessions", day, total_minutes, len(sessions)
    )
    if total_minutes <= 0:
        return None, None

    score = sleep_quality_score(total_minutes / 60.0)
    return int(total_minutes), (score if score > 0 else None)


# ---------------------------------------------------------------------------
# Days
# ---------------------------------------------------------------------------


def aggregate_day(
    day: date,
    samples_by_type: Mapping[HealthTypeId, Sequence[HealthSample]],
    tz: tzinfo,
    config: SleepConfig | None = None,
) -> DailyHealthMetrics:
    """Build the DailyHealthMetrics record for one local calendar day.

    Args:
        day:             Local calendar day.
        samples_by_type: Raw samples (may cover more than this day).
        tz:              User timezone.
        config:          Sleep attribution settings.

    Returns:
        One record; optional fields are None where no samples matched.
    """
    config = config or SleepConfig()
    start, end = day_bounds(day, tz)

    def _in_day(samples: Iterable[HealthSample]) -> list[HealthSample]:
        return [s for s in samples if start <= s.start < end]

    fields: dict[str, object] = {}

    for type_id, name in _SUMMED_FIELDS.items():
        matched = deduplicate_quantity_samples(_in_day(samples_by_type.get(type_id, ())))
        if not matched:
            continue
        total = sum(s.value for s in matched)
        if name in _MINUTE_FIELDS and total > _MINUTES_PER_DAY:
            logger.warning(
                "%s for %s is %.0f min, capping at %d", name, day, total, _MINUTES_PER_DAY
            )
            total = _MINUTES_PER_DAY
        fields[name] = int(round(total)) if name in _INTEGER_FIELDS else total

    for type_id, name in _AVERAGED_FIELDS.items():
        matched = _in_day(samples_by_type.get(type_id, ()))
        if matched:
            fields[name] = statistics.fmean(s.value for s in matched)

    workouts = _in_day(samples_by_type.get(HealthTypeId.WORKOUT, ()))
    if workouts:
        fields["workouts_count"] = len(workouts)

    sleep_minutes, quality = summarize_sleep(
        samples_by_type.get(HealthTypeId.SLEEP_ANALYSIS, ()), day, tz, config
    )
    fields["sleep_minutes"] = sleep_minutes
    fields["sleep_quality_score"] = quality

    return DailyHealthMetrics(date=day, **fields)


def aggregate_range(
    days: Iterable[date],
    samples: Iterable[HealthSample],
    tz: tzinfo,
    config: SleepConfig | None = None,
) -> list[DailyHealthMetrics]:
    """Aggregate ``samples`` into one record per day in ``days`` (in order)."""
    by_type: dict[HealthTypeId, list[HealthSample]] = defaultdict(list)
    for sample in samples:
        by_type[sample.type_id].append(sample)
    return [aggregate_day(day, by_type, tz, config) for day in days]
