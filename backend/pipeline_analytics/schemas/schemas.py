"""
Pydantic schemas for API responses.

Domain records are dataclasses; every schema reads them with from_attributes.
Undefined figures stay null in JSON.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ── Aggregates ──

class FailureBucketOut(_FromAttributes):
    reason: str
    count: int


class DailyPointOut(_FromAttributes):
    day: date
    total: int
    success_count: int
    success_rate: float
    avg_duration_seconds: float | None = None


class WeekdayPointOut(_FromAttributes):
    weekday: int
    label: str
    total: int
    success_count: int
    success_rate: float


class AggregateStatsOut(_FromAttributes):
    total: int
    success_count: int
    failure_count: int
    success_rate: float
    avg_duration_seconds: float | None
    status_counts: dict[str, int]
    daily: list[DailyPointOut]
    weekdays: list[WeekdayPointOut]
    failure_reasons: dict[str, int]
    top_failures: list[FailureBucketOut]
    window: int | None = None


class BottleneckOut(_FromAttributes):
    kind: str
    type: str
    severity: str
    description: str
    prediction: str
    recommendation: str
    impact_score: float
    evidence: dict[str, Any]


# ── Optimizations ──

class CurrentMetricsOut(_FromAttributes):
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = None


class ProjectedMetricsOut(_FromAttributes):
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = None
    time_saved_minutes: float | None = None


class OptimizationOut(_FromAttributes):
    optimization_id: str
    pipeline_config_id: str
    optimization_type: str
    title: str
    description: str
    confidence_score: float
    current_metrics: CurrentMetricsOut
    projected_metrics: ProjectedMetricsOut
    implementation_steps: list[str]
    code_changes: dict[str, Any]
    status: str
    applied_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime | None = None


class OptimizationListResponse(BaseModel):
    pipeline_config_id: str
    status: str | None
    items: list[OptimizationOut]


class LifecycleEventOut(_FromAttributes):
    event_id: str
    event_type: str
    actor: str
    optimization_id: str
    pipeline_config_id: str
    details: dict[str, Any]
    current_hash: str
    created_at: datetime | None = None


# ── Dashboard / analysis ──

class DashboardResponse(_FromAttributes):
    pipeline_config_id: str
    stats: AggregateStatsOut
    bottlenecks: list[BottleneckOut]
    candidates: list[OptimizationOut]
    fetched_at: datetime
    stale: bool = False
    error: str | None = None


class AnalysisSummaryOut(_FromAttributes):
    total_runs: int
    avg_duration_minutes: float | None
    success_rate: float
    potential_time_saved_minutes: float
    critical_bottlenecks: int


class AnalysisResponse(_FromAttributes):
    dashboard: DashboardResponse
    advisor_status: str
    proposed: list[OptimizationOut]
    skipped_duplicates: int
    summary: AnalysisSummaryOut


# ── Impact ──

class ImpactSampleOut(_FromAttributes):
    run_id: str
    started_at: datetime
    duration_minutes: float | None
    success: bool
    phase: str


class ImpactReportOut(_FromAttributes):
    pipeline_config_id: str
    cutover: datetime | None
    applied_optimization_ids: list[str]
    before: AggregateStatsOut
    after: AggregateStatsOut
    avg_duration_before_minutes: float | None
    avg_duration_after_minutes: float | None
    success_rate_before: float | None
    success_rate_after: float | None
    time_saved_minutes: float | None
    success_rate_delta: float | None
    total_time_saved_minutes: float | None
    estimated_cost_reduction: float | None
    cost_per_minute: float
    samples: list[ImpactSampleOut]
    generated_at: datetime | None = None
    stale: bool = False


# ── Runs ──

class RunOut(_FromAttributes):
    run_id: str
    pipeline_config_id: str
    status: str
    started_at: datetime
    duration_seconds: float | None = None
    branch: str | None = None
    commit_sha: str | None = None
    triggered_by: str | None = None
    error_message: str | None = None


class RunListResponse(BaseModel):
    pipeline_config_id: str
    total: int
    runs: list[RunOut]
