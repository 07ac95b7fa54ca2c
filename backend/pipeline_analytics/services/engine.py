"""
Analytics Engine

Facade the API and worker talk to. Wires the stores, the polling reconciler,
the pure analytics functions, the advisor and the lifecycle manager together.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Awaitable, Callable

from pipeline_analytics.analytics.aggregator import aggregate_runs
from pipeline_analytics.analytics.bottlenecks import MIN_RUNS, BottleneckDetector
from pipeline_analytics.analytics.impact import analyze_impact
from pipeline_analytics.analytics.types import (
    AggregateStats,
    Bottleneck,
    ImpactReport,
    LifecycleStatus,
    OptimizationCandidate,
    QualityCheckRecord,
    RunRecord,
    utcnow,
)
from pipeline_analytics.config import settings
from pipeline_analytics.errors import AdvisorTimeout, AdvisorUnavailable, DuplicateProposal, StoreUnavailable
from pipeline_analytics.middleware.metrics import aggregation_duration_seconds, aggregation_passes_total
from pipeline_analytics.services.advisor import AdvisorBridge
from pipeline_analytics.services.lifecycle import LifecycleManager
from pipeline_analytics.services.optimization_store import OptimizationStore, SqlOptimizationStore
from pipeline_analytics.services.reconciler import Fetch, ReconcilerRegistry, Snapshot
from pipeline_analytics.services.run_store import RunStore, SqlRunStore

logger = logging.getLogger(__name__)

ReportLoader = Callable[[str], Awaitable[ImpactReport | None]]
ReportSaver = Callable[[ImpactReport], Awaitable[None]]


@dataclass(frozen=True)
class PipelineSnapshot:
    """Everything one aggregation pass reads, fetched together."""
    runs: tuple[RunRecord, ...] = ()
    candidates: tuple[OptimizationCandidate, ...] = ()
    quality_checks: tuple[QualityCheckRecord, ...] = ()


@dataclass(frozen=True)
class Dashboard:
    pipeline_config_id: str
    stats: AggregateStats
    bottlenecks: list[Bottleneck]
    candidates: list[OptimizationCandidate]
    fetched_at: datetime
    stale: bool = False
    error: str | None = None


@dataclass(frozen=True)
class AnalysisSummary:
    total_runs: int
    avg_duration_minutes: float | None
    success_rate: float
    potential_time_saved_minutes: float
    critical_bottlenecks: int


@dataclass(frozen=True)
class AnalysisResult:
    dashboard: Dashboard
    advisor_status: str  # ok, timeout, unavailable, insufficient_data, disabled
    proposed: list[OptimizationCandidate] = field(default_factory=list)
    skipped_duplicates: int = 0

    @property
    def summary(self) -> AnalysisSummary:
        stats = self.dashboard.stats
        avg = stats.avg_duration_seconds
        return AnalysisSummary(
            total_runs=stats.total,
            avg_duration_minutes=round(avg / 60, 1) if avg is not None else None,
            success_rate=round(stats.success_rate, 1),
            potential_time_saved_minutes=round(
                sum(c.projected_metrics.time_saved_minutes or 0.0 for c in self.proposed), 2,
            ),
            critical_bottlenecks=sum(1 for b in self.dashboard.bottlenecks if b.severity == "high"),
        )


async def load_pipeline_snapshot(
    runs: RunStore,
    optimizations: OptimizationStore,
    pipeline_config_id: str,
    *,
    window: int | None = None,
    quality_run_limit: int | None = None,
) -> PipelineSnapshot:
    window = window if window is not None else settings.run_window
    quality_run_limit = quality_run_limit if quality_run_limit is not None else settings.quality_check_run_limit

    recent = await runs.list_runs(pipeline_config_id, limit=window)
    checks: list[QualityCheckRecord] = []
    checked_runs = recent[-quality_run_limit:] if quality_run_limit > 0 else []
    for run in checked_runs:
        checks.extend(await runs.list_quality_checks(run.run_id))
    candidates = await optimizations.list_by_status(pipeline_config_id)
    return PipelineSnapshot(runs=tuple(recent), candidates=tuple(candidates), quality_checks=tuple(checks))


def sql_snapshot_fetcher(session_factory) -> Callable[[str], Fetch]:
    """Reconciler fetch factory that opens a fresh session per fetch."""

    def fetch_for(pipeline_config_id: str) -> Fetch:
        async def fetch() -> PipelineSnapshot:
            async with session_factory() as session:
                return await load_pipeline_snapshot(
                    SqlRunStore(session), SqlOptimizationStore(session), pipeline_config_id,
                )
        return fetch

    return fetch_for


class AnalyticsEngine:
    def __init__(
        self,
        *,
        runs: RunStore,
        lifecycle: LifecycleManager,
        advisor: AdvisorBridge | None = None,
        reconcilers: ReconcilerRegistry | None = None,
        detector: BottleneckDetector | None = None,
        load_cached_report: ReportLoader | None = None,
        save_report: ReportSaver | None = None,
        window: int | None = None,
        cost_per_minute: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.runs = runs
        self.lifecycle = lifecycle
        self.advisor = advisor
        self.reconcilers = reconcilers
        self.detector = detector or BottleneckDetector()
        self.load_cached_report = load_cached_report
        self.save_report = save_report
        self.window = window if window is not None else settings.run_window
        self.cost_per_minute = cost_per_minute if cost_per_minute is not None else settings.cost_per_minute
        self.clock = clock

    # ── Dashboard ────────────────────────────────────────────────────────

    async def _snapshot(self, pipeline_config_id: str) -> Snapshot:
        if self.reconcilers is not None:
            return await self.reconcilers.get(pipeline_config_id).refresh()
        data = await load_pipeline_snapshot(
            self.runs, self.lifecycle.store, pipeline_config_id, window=self.window,
        )
        return Snapshot(data=data, seq=0, fetched_at=utcnow())

    async def get_dashboard(self, pipeline_config_id: str) -> Dashboard:
        snapshot = await self._snapshot(pipeline_config_id)
        data: PipelineSnapshot = snapshot.data

        start = time.time()
        stats = aggregate_runs(data.runs, window=self.window, as_of=self.clock())
        bottlenecks = self.detector.detect(stats, data.runs, data.quality_checks)
        aggregation_duration_seconds.observe(time.time() - start)
        aggregation_passes_total.labels(outcome="stale" if snapshot.stale else "fresh").inc()

        return Dashboard(
            pipeline_config_id=pipeline_config_id,
            stats=stats,
            bottlenecks=bottlenecks,
            candidates=list(data.candidates),
            fetched_at=snapshot.fetched_at,
            stale=snapshot.stale,
            error=snapshot.error,
        )

    # ── Advisor pass ─────────────────────────────────────────────────────

    async def analyze(self, pipeline_config_id: str, *, actor: str = "system") -> AnalysisResult:
        """Aggregate, detect, ask the advisor and propose what it returns.

        Advisor failures degrade to a bottlenecks-only result.
        """
        dashboard = await self.get_dashboard(pipeline_config_id)

        if self.advisor is None:
            return AnalysisResult(dashboard=dashboard, advisor_status="disabled")
        if dashboard.stats.total < MIN_RUNS:
            return AnalysisResult(dashboard=dashboard, advisor_status="insufficient_data")

        try:
            suggestions = await self.advisor.propose(pipeline_config_id, dashboard.stats, dashboard.bottlenecks)
        except AdvisorTimeout as exc:
            logger.warning("Advisor timed out for %s: %s", pipeline_config_id, exc)
            return AnalysisResult(dashboard=dashboard, advisor_status="timeout")
        except AdvisorUnavailable as exc:
            logger.warning("Advisor unavailable for %s: %s", pipeline_config_id, exc)
            return AnalysisResult(dashboard=dashboard, advisor_status="unavailable")

        proposed = []
        skipped = 0
        for suggestion in suggestions:
            try:
                proposed.append(await self.lifecycle.propose(suggestion, actor=actor))
            except DuplicateProposal as exc:
                skipped += 1
                logger.info("Skipping duplicate proposal for %s: %s", pipeline_config_id, exc.message)

        return AnalysisResult(
            dashboard=dashboard,
            advisor_status="ok",
            proposed=proposed,
            skipped_duplicates=skipped,
        )

    # ── Impact ───────────────────────────────────────────────────────────

    async def compute_impact_report(self, pipeline_config_id: str) -> ImpactReport:
        runs = await self.runs.list_runs(pipeline_config_id, limit=None)
        applied = await self.lifecycle.list_candidates(pipeline_config_id, LifecycleStatus.APPLIED.value)
        return analyze_impact(
            pipeline_config_id, runs, applied, cost_per_minute=self.cost_per_minute,
        )

    async def get_impact_report(self, pipeline_config_id: str) -> ImpactReport:
        """Fresh report, or the last cached one flagged stale when the store is down."""
        try:
            report = await self.compute_impact_report(pipeline_config_id)
        except StoreUnavailable:
            cached = await self.load_cached_report(pipeline_config_id) if self.load_cached_report else None
            if cached is None:
                raise
            logger.warning("Serving cached impact report for %s (generated %s)", pipeline_config_id, cached.generated_at)
            return replace(cached, stale=True)

        if self.save_report is not None:
            await self.save_report(report)
        return report

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def apply(self, optimization_id: str, *, actor: str = "system") -> OptimizationCandidate:
        return await self.lifecycle.apply(optimization_id, actor=actor)

    async def reject(self, optimization_id: str, *, actor: str = "system") -> OptimizationCandidate:
        return await self.lifecycle.reject(optimization_id, actor=actor)
