"""
Bottleneck Detector — classifies aggregate statistics and run patterns into
severity-ranked findings.

Detection rules:
    - Weekday congestion (busy weekday with a depressed success rate)
    - Duration trend (rising daily average over the recent third of the series)
    - Recurring failure (one failure reason dominating the failures)
    - High failure rate
    - Peak-hour congestion
    - Quality gate failures

With fewer than MIN_RUNS runs the detector returns an empty list instead of
guessing.
"""

import logging
from collections import Counter
from typing import Iterable, Sequence

from pipeline_analytics.analytics.aggregator import apply_window, chronological
from pipeline_analytics.analytics.types import (
    AggregateStats,
    Bottleneck,
    OptimizationType,
    QualityCheckRecord,
    RunRecord,
    SEVERITY_RANK,
    Severity,
    as_utc,
)

logger = logging.getLogger(__name__)

MIN_RUNS = 5

DEFAULT_THRESHOLDS = {
    "weekday_load_factor": 2.0,          # bucket count > 2x mean bucket count
    "weekday_success_gap": 10.0,         # percentage points below global rate
    "failure_bucket_share": 0.20,        # share of all failures
    "failure_share_high": 0.50,
    "failure_share_medium": 0.35,
    "high_failure_rate": 0.15,
    "peak_hour_share": 0.70,
    "quality_gate_failure_share": 0.20,
    "quality_gate_failure_high": 0.50,
    "trend_min_points": 3,
}

PEAK_HOURS = range(9, 18)  # 09:00-17:59 UTC

CACHE_KEYWORDS = (
    "cache", "timeout", "timed out", "network", "download", "fetch",
    "artifact", "connection reset", "econnreset", "etimedout",
)


def linear_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    den = sum((i - mean_x) ** 2 for i in range(n))
    return num / den if den else 0.0


def classify_failure(reason: str) -> str:
    text = reason.lower()
    if any(k in text for k in CACHE_KEYWORDS):
        return OptimizationType.CACHING.value
    return OptimizationType.DEPENDENCY_OPTIMIZATION.value


def rank_bottlenecks(findings: Iterable[Bottleneck]) -> list[Bottleneck]:
    return sorted(
        findings,
        key=lambda b: (-SEVERITY_RANK.get(b.severity, 0), -b.impact_score, b.kind),
    )


class BottleneckDetector:
    """Runs every detection rule and returns findings ranked by severity then impact."""

    def __init__(self, thresholds: dict | None = None):
        self.thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)

    def detect(
        self,
        stats: AggregateStats,
        runs: Iterable[RunRecord],
        quality_checks: Iterable[QualityCheckRecord] = (),
    ) -> list[Bottleneck]:
        if stats.total < MIN_RUNS:
            logger.debug("Skipping bottleneck detection: only %d runs", stats.total)
            return []

        window_runs = apply_window(chronological(runs), stats.window)

        findings: list[Bottleneck] = []
        findings.extend(self._weekday_congestion(stats))
        findings.extend(self._duration_trend(stats))
        findings.extend(self._recurring_failures(stats))
        findings.extend(self._high_failure_rate(stats))
        findings.extend(self._peak_hours(window_runs))
        findings.extend(self._quality_gates(list(quality_checks)))
        return rank_bottlenecks(findings)

    # ── Rules ────────────────────────────────────────────────────────────

    def _weekday_congestion(self, stats: AggregateStats) -> list[Bottleneck]:
        mean_count = stats.total / 7
        found = []
        for point in stats.weekdays:
            if point.total <= self.thresholds["weekday_load_factor"] * mean_count:
                continue
            gap = stats.success_rate - point.success_rate
            if gap <= self.thresholds["weekday_success_gap"]:
                continue
            share = point.total / stats.total
            found.append(Bottleneck(
                kind="weekday_congestion",
                type=OptimizationType.RESOURCE_ALLOCATION.value,
                severity=Severity.HIGH.value,
                description=(
                    f"{point.label} carries {point.total} runs ({share:.0%} of the window) "
                    f"and succeeds {point.success_rate:.1f}% of the time vs {stats.success_rate:.1f}% overall"
                ),
                prediction="Runner contention on this weekday will keep failing builds without more capacity",
                recommendation="Add runner capacity or spread scheduled runs away from this weekday",
                impact_score=round(share * gap, 3),
                evidence={"weekday": point.label, "runs": point.total,
                          "success_rate": point.success_rate, "gap": gap},
            ))
        return found

    def _duration_trend(self, stats: AggregateStats) -> list[Bottleneck]:
        series = stats.daily
        recent = series[-(len(series) // 3):] if len(series) >= 3 else series
        values = [p.avg_duration_seconds for p in recent if p.avg_duration_seconds is not None]
        if len(values) < self.thresholds["trend_min_points"]:
            return []

        slope = linear_slope(values)
        if slope <= 0:
            return []

        baseline = values[0] or 1.0
        growth_pct = slope * (len(values) - 1) / baseline * 100
        projected = values[-1] + slope * 14
        return [Bottleneck(
            kind="duration_trend",
            type=OptimizationType.BUILD_OPTIMIZATION.value,
            severity=Severity.MEDIUM.value,
            description=(
                f"Average build duration rising by {slope:.0f}s per active day "
                f"over the last {len(recent)} days - possible dependency bloat or test slowdown"
            ),
            prediction=f"If the trend continues, builds may reach {projected / 60:.0f}m in the next 2 weeks",
            recommendation="Review dependencies, enable caching, or parallelize tests",
            impact_score=round(growth_pct, 3),
            evidence={"slope_seconds_per_day": slope, "points": len(values)},
        )]

    def _recurring_failures(self, stats: AggregateStats) -> list[Bottleneck]:
        if stats.failure_count <= 0:
            return []
        found = []
        for reason, count in stats.failure_reasons.items():
            share = count / stats.failure_count
            if share <= self.thresholds["failure_bucket_share"]:
                continue
            if share >= self.thresholds["failure_share_high"]:
                severity = Severity.HIGH.value
            elif share >= self.thresholds["failure_share_medium"]:
                severity = Severity.MEDIUM.value
            else:
                severity = Severity.LOW.value
            opt_type = classify_failure(reason)
            if opt_type == OptimizationType.CACHING.value:
                recommendation = "Cache dependencies and build artifacts between runs"
            else:
                recommendation = "Pin and pre-resolve dependencies; use lockfile installs"
            found.append(Bottleneck(
                kind="recurring_failure",
                type=opt_type,
                severity=severity,
                description=f"'{reason}' accounts for {share:.0%} of failures ({count} runs)",
                prediction="This failure will keep recurring until its root cause is addressed",
                recommendation=recommendation,
                impact_score=round(share * 100, 3),
                evidence={"reason": reason, "count": count, "share": share},
            ))
        return found

    def _high_failure_rate(self, stats: AggregateStats) -> list[Bottleneck]:
        rate = stats.failure_count / stats.total
        if rate <= self.thresholds["high_failure_rate"]:
            return []
        return [Bottleneck(
            kind="high_failure_rate",
            type=OptimizationType.BUILD_OPTIMIZATION.value,
            severity=Severity.HIGH.value,
            description=f"{rate * 100:.1f}% failure rate - stability issues detected",
            prediction="Failures likely to increase without intervention",
            recommendation="Add quality gates, improve test coverage, or review recent changes",
            impact_score=round(rate * 100, 3),
            evidence={"failure_rate": rate},
        )]

    def _peak_hours(self, runs: list[RunRecord]) -> list[Bottleneck]:
        if not runs:
            return []
        peak = sum(1 for r in runs if as_utc(r.started_at).hour in PEAK_HOURS)
        share = peak / len(runs)
        if share <= self.thresholds["peak_hour_share"]:
            return []
        return [Bottleneck(
            kind="peak_hour_congestion",
            type=OptimizationType.RESOURCE_ALLOCATION.value,
            severity=Severity.LOW.value,
            description=f"{share:.0%} of runs start during peak hours - may face queue delays",
            prediction="Queue times may increase during business hours",
            recommendation="Consider off-peak scheduling or increase runner capacity",
            impact_score=round((share - self.thresholds["peak_hour_share"]) * 100, 3),
            evidence={"peak_share": share},
        )]

    def _quality_gates(self, checks: list[QualityCheckRecord]) -> list[Bottleneck]:
        if not checks:
            return []
        failed = [c for c in checks if not c.gate_passed]
        share = len(failed) / len(checks)
        if share <= self.thresholds["quality_gate_failure_share"]:
            return []
        severity = (
            Severity.HIGH.value
            if share > self.thresholds["quality_gate_failure_high"]
            else Severity.MEDIUM.value
        )
        rules = Counter(issue.rule for c in failed for issue in c.issues)
        tools = sorted({c.tool for c in failed})
        return [Bottleneck(
            kind="quality_gate_failures",
            type=OptimizationType.BUILD_OPTIMIZATION.value,
            severity=severity,
            description=f"{share:.0%} of quality checks failed their gate ({', '.join(tools)})",
            prediction="Gate failures block merges and trigger re-runs",
            recommendation="Fix the most frequent rule violations or run the checks earlier in the pipeline",
            impact_score=round(share * 100, 3),
            evidence={"failed_checks": len(failed), "checks": len(checks),
                      "top_rules": [r for r, _ in rules.most_common(3)]},
        )]


_default_detector = BottleneckDetector()


def detect_bottlenecks(
    stats: AggregateStats,
    runs: Iterable[RunRecord],
    quality_checks: Iterable[QualityCheckRecord] = (),
) -> list[Bottleneck]:
    return _default_detector.detect(stats, runs, quality_checks)
