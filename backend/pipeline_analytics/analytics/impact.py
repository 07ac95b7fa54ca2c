"""
Impact Analyzer — before/after comparison around the earliest applied
optimization.

The cutover is min(applied_at) over applied candidates. Runs strictly older
than the cutover form the "before" population, every other run the "after"
population, so the two always partition the history. Averages and rates of an
empty population are None (undefined), and every figure derived from an
undefined value is undefined too.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from pipeline_analytics.analytics.aggregator import aggregate_runs, chronological
from pipeline_analytics.analytics.types import (
    AggregateStats,
    ImpactReport,
    ImpactSample,
    LifecycleStatus,
    OptimizationCandidate,
    RunRecord,
    as_utc,
    utcnow,
)

SAMPLE_SIZE = 20


def current_cutover(candidates: Iterable[OptimizationCandidate]) -> datetime | None:
    """Earliest applied_at among applied candidates, or None."""
    stamps = [
        as_utc(c.applied_at)
        for c in candidates
        if c.status == LifecycleStatus.APPLIED.value and c.applied_at is not None
    ]
    return min(stamps) if stamps else None


def partition_runs(
    runs: Iterable[RunRecord], cutover: datetime | None,
) -> tuple[list[RunRecord], list[RunRecord]]:
    ordered = chronological(runs)
    if cutover is None:
        return ordered, []
    cut = as_utc(cutover)
    before = [r for r in ordered if as_utc(r.started_at) < cut]
    after = [r for r in ordered if as_utc(r.started_at) >= cut]
    return before, after


def _minutes(seconds: float | None) -> float | None:
    return None if seconds is None else seconds / 60


def _rate(stats: AggregateStats) -> float | None:
    return stats.success_rate if stats.total > 0 else None


def analyze_impact(
    pipeline_config_id: str,
    runs: Iterable[RunRecord],
    candidates: Iterable[OptimizationCandidate],
    *,
    cost_per_minute: float,
    sample_size: int = SAMPLE_SIZE,
    now: datetime | None = None,
) -> ImpactReport:
    """Compare the run populations on either side of the cutover.

    ``candidates`` may contain any status; only applied ones count.
    ``cost_per_minute`` is injected from configuration.
    """
    applied = [c for c in candidates if c.status == LifecycleStatus.APPLIED.value]
    cutover = current_cutover(applied)
    before, after = partition_runs(runs, cutover)

    before_stats = aggregate_runs(before, window=None)
    after_stats = aggregate_runs(after, window=None)

    avg_before = _minutes(before_stats.avg_duration_seconds)
    avg_after = _minutes(after_stats.avg_duration_seconds)
    rate_before = _rate(before_stats)
    rate_after = _rate(after_stats)

    time_saved = None
    if cutover is not None and avg_before is not None and avg_after is not None:
        # Negative means time added; the sign is kept for the caller to present.
        time_saved = avg_before - avg_after

    rate_delta = None
    if cutover is not None and rate_before is not None and rate_after is not None:
        rate_delta = rate_after - rate_before

    total_saved = None if time_saved is None else time_saved * len(after)
    cost_reduction = None if total_saved is None else total_saved * cost_per_minute

    samples = []
    if sample_size > 0:
        tail = (before + after)[-sample_size:]
        after_ids = {r.run_id for r in after}
        samples = [
            ImpactSample(
                run_id=r.run_id,
                started_at=as_utc(r.started_at),
                duration_minutes=_minutes(r.duration_seconds),
                success=r.succeeded,
                phase="after" if r.run_id in after_ids else "before",
            )
            for r in tail
        ]

    return ImpactReport(
        pipeline_config_id=pipeline_config_id,
        cutover=cutover,
        applied_optimization_ids=tuple(
            c.optimization_id for c in sorted(applied, key=lambda c: as_utc(c.applied_at))
            if c.applied_at is not None
        ),
        before=before_stats,
        after=after_stats,
        avg_duration_before_minutes=avg_before,
        avg_duration_after_minutes=avg_after,
        success_rate_before=rate_before,
        success_rate_after=rate_after,
        time_saved_minutes=time_saved,
        success_rate_delta=rate_delta,
        total_time_saved_minutes=total_saved,
        estimated_cost_reduction=cost_reduction,
        cost_per_minute=cost_per_minute,
        samples=tuple(samples),
        generated_at=now or utcnow(),
    )
