"""
Domain records shared by the aggregator, detector, lifecycle manager and
impact analyzer.

Run and quality-check records are frozen: they are read-only inputs owned by
the external executor. Candidates are replaced (``dataclasses.replace``), never
mutated in place, so a snapshot handed to a pure computation cannot change
underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OptimizationType(str, Enum):
    PARALLELIZATION = "parallelization"
    RESOURCE_ALLOCATION = "resource_allocation"
    BUILD_OPTIMIZATION = "build_optimization"
    CACHING = "caching"
    DEPENDENCY_OPTIMIZATION = "dependency_optimization"


class LifecycleStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SEVERITY_RANK = {Severity.HIGH.value: 3, Severity.MEDIUM.value: 2, Severity.LOW.value: 1}

# Sunday-first, matching the dashboard's weekday chart
WEEKDAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def as_utc(ts: datetime) -> datetime:
    """Interpret naive timestamps as UTC and normalise aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Inputs (read-only) ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class RunRecord:
    run_id: str
    pipeline_config_id: str
    status: str
    started_at: datetime
    duration_seconds: float | None = None
    branch: str | None = None
    commit_sha: str | None = None
    triggered_by: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS.value

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED.value


@dataclass(frozen=True)
class QualityIssue:
    severity: str
    rule: str
    message: str
    location: str | None = None


@dataclass(frozen=True)
class QualityCheckRecord:
    check_id: str
    run_id: str
    tool: str
    gate_passed: bool
    score: float
    issues: tuple[QualityIssue, ...] = ()


# ── Aggregates ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DailyPoint:
    day: date
    total: int
    success_count: int
    success_rate: float
    avg_duration_seconds: float | None = None


@dataclass(frozen=True)
class WeekdayPoint:
    weekday: int  # 0 = Sunday
    label: str
    total: int
    success_count: int
    success_rate: float


@dataclass(frozen=True)
class FailureBucket:
    reason: str
    count: int


@dataclass(frozen=True)
class AggregateStats:
    total: int
    success_count: int
    failure_count: int
    success_rate: float
    avg_duration_seconds: float | None
    status_counts: dict[str, int] = field(default_factory=dict)
    daily: tuple[DailyPoint, ...] = ()
    weekdays: tuple[WeekdayPoint, ...] = ()
    failure_reasons: dict[str, int] = field(default_factory=dict)
    top_failures: tuple[FailureBucket, ...] = ()
    window: int | None = None


@dataclass(frozen=True)
class Bottleneck:
    kind: str
    type: str
    severity: str
    description: str
    prediction: str
    recommendation: str
    impact_score: float = 0.0
    evidence: dict[str, Any] = field(default_factory=dict)


# ── Optimizations ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CurrentMetrics:
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = None


@dataclass(frozen=True)
class ProjectedMetrics:
    avg_duration_seconds: float | None = None
    success_rate_pct: float | None = None
    time_saved_minutes: float | None = None


@dataclass(frozen=True)
class OptimizationCandidate:
    optimization_id: str
    pipeline_config_id: str
    optimization_type: str
    title: str
    description: str = ""
    confidence_score: float = 0.0
    current_metrics: CurrentMetrics = field(default_factory=CurrentMetrics)
    projected_metrics: ProjectedMetrics = field(default_factory=ProjectedMetrics)
    implementation_steps: tuple[str, ...] = ()
    code_changes: dict[str, Any] = field(default_factory=dict)
    status: str = LifecycleStatus.PENDING.value
    applied_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime | None = None


# ── Impact ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImpactSample:
    run_id: str
    started_at: datetime
    duration_minutes: float | None
    success: bool
    phase: str  # before, after


@dataclass(frozen=True)
class ImpactReport:
    pipeline_config_id: str
    cutover: datetime | None
    applied_optimization_ids: tuple[str, ...]
    before: AggregateStats
    after: AggregateStats
    avg_duration_before_minutes: float | None
    avg_duration_after_minutes: float | None
    success_rate_before: float | None
    success_rate_after: float | None
    time_saved_minutes: float | None
    success_rate_delta: float | None
    total_time_saved_minutes: float | None
    estimated_cost_reduction: float | None
    cost_per_minute: float
    samples: tuple[ImpactSample, ...] = ()
    generated_at: datetime | None = None
    stale: bool = False
