"""
Metrics Aggregator — turns a pipeline's run history into windowed statistics.

Produces:
    - totals, success/failure counts, success rate (0 when there are no runs)
    - average duration over runs that have a terminal duration
    - a 30-point daily series (UTC calendar days)
    - a Sunday-first day-of-week histogram
    - a failure-reason histogram keyed by the first 50 characters of the error

Everything here is a pure function of its arguments.
"""

import math
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable

from pipeline_analytics.analytics.types import (
    AggregateStats,
    DailyPoint,
    FailureBucket,
    RunRecord,
    RunStatus,
    WEEKDAY_LABELS,
    WeekdayPoint,
    as_utc,
    utcnow,
)

DEFAULT_WINDOW = 100
DAILY_POINTS = 30
FAILURE_KEY_LENGTH = 50
TOP_FAILURES = 5
UNKNOWN_ERROR = "Unknown error"


def success_rate(success_count: int, total: int) -> float:
    """Percentage in [0, 100]; 0 for an empty population."""
    if total <= 0:
        return 0.0
    return success_count * 100.0 / total


def average_duration(runs: Iterable[RunRecord]) -> float | None:
    """Mean duration over runs with a duration, or None when none has one."""
    durations = [r.duration_seconds for r in runs if r.duration_seconds is not None]
    if not durations:
        return None
    return math.fsum(durations) / len(durations)


def failure_key(error_message: str | None) -> str:
    # Messages that differ only after the cut share a bucket.
    return (error_message or UNKNOWN_ERROR)[:FAILURE_KEY_LENGTH]


def weekday_index(ts: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (as_utc(ts).weekday() + 1) % 7


def chronological(runs: Iterable[RunRecord]) -> list[RunRecord]:
    return sorted(runs, key=lambda r: as_utc(r.started_at))


def apply_window(runs: list[RunRecord], window: int | None) -> list[RunRecord]:
    if window is None:
        return list(runs)
    if window <= 0:
        return []
    return runs[-window:]


def aggregate_runs(
    runs: Iterable[RunRecord],
    *,
    window: int | None = DEFAULT_WINDOW,
    as_of: date | datetime | None = None,
    days: int = DAILY_POINTS,
) -> AggregateStats:
    """Aggregate the most recent ``window`` runs (all runs when ``window`` is None).

    ``as_of`` anchors the daily series; it defaults to the day of the latest
    run so that the result depends only on the input.
    """
    ordered = apply_window(chronological(runs), window)

    total = len(ordered)
    status_counts = Counter(r.status for r in ordered)
    successes = status_counts.get(RunStatus.SUCCESS.value, 0)
    failures = status_counts.get(RunStatus.FAILED.value, 0)

    failure_reasons = Counter(failure_key(r.error_message) for r in ordered if r.failed)
    top = sorted(failure_reasons.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_FAILURES]

    return AggregateStats(
        total=total,
        success_count=successes,
        failure_count=failures,
        success_rate=success_rate(successes, total),
        avg_duration_seconds=average_duration(ordered),
        status_counts={s.value: status_counts.get(s.value, 0) for s in RunStatus},
        daily=tuple(daily_series(ordered, as_of=as_of, days=days)),
        weekdays=tuple(weekday_histogram(ordered)),
        failure_reasons=dict(failure_reasons),
        top_failures=tuple(FailureBucket(reason=k, count=v) for k, v in top),
        window=window,
    )


def daily_series(
    runs: list[RunRecord],
    *,
    as_of: date | datetime | None = None,
    days: int = DAILY_POINTS,
) -> list[DailyPoint]:
    """One point per UTC day, oldest first, ending on ``as_of``."""
    if isinstance(as_of, datetime):
        end = as_utc(as_of).date()
    elif isinstance(as_of, date):
        end = as_of
    elif runs:
        end = max(as_utc(r.started_at) for r in runs).date()
    else:
        end = utcnow().date()

    by_day: dict[date, list[RunRecord]] = defaultdict(list)
    for r in runs:
        by_day[as_utc(r.started_at).date()].append(r)

    points = []
    for offset in range(days - 1, -1, -1):
        day = end - timedelta(days=offset)
        day_runs = by_day.get(day, [])
        day_success = sum(1 for r in day_runs if r.succeeded)
        points.append(DailyPoint(
            day=day,
            total=len(day_runs),
            success_count=day_success,
            success_rate=success_rate(day_success, len(day_runs)),
            avg_duration_seconds=average_duration(day_runs),
        ))
    return points


def weekday_histogram(runs: list[RunRecord]) -> list[WeekdayPoint]:
    totals = [0] * 7
    successes = [0] * 7
    for r in runs:
        idx = weekday_index(r.started_at)
        totals[idx] += 1
        if r.succeeded:
            successes[idx] += 1
    return [
        WeekdayPoint(
            weekday=i,
            label=WEEKDAY_LABELS[i],
            total=totals[i],
            success_count=successes[i],
            success_rate=success_rate(successes[i], totals[i]),
        )
        for i in range(7)
    ]
