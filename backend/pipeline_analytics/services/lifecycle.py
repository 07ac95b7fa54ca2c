"""
Optimization Lifecycle Manager

Owns the per-candidate state machine:

    pending ──apply──▶ applied   (terminal)
    pending ──reject─▶ rejected  (terminal)

- All transitions for one pipeline run under that pipeline's lock, so they
  are linearizable; the store's compare-and-set update covers other processes.
- Apply on an already-applied candidate returns it unchanged.
- A successful apply emits an impact-recompute signal after the transition
  is committed. The signal runs as a background task and never fails the apply.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from pipeline_analytics.analytics.impact import current_cutover
from pipeline_analytics.analytics.types import LifecycleStatus, OptimizationCandidate, utcnow
from pipeline_analytics.config import settings
from pipeline_analytics.errors import DuplicateProposal, InvalidTransition, NotFound
from pipeline_analytics.middleware.metrics import lifecycle_transitions_total
from pipeline_analytics.services.optimization_store import OptimizationStore

logger = logging.getLogger(__name__)

PENDING = LifecycleStatus.PENDING.value
APPLIED = LifecycleStatus.APPLIED.value
REJECTED = LifecycleStatus.REJECTED.value

VALID_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {APPLIED, REJECTED},
    APPLIED: set(),   # terminal
    REJECTED: set(),  # terminal
}

ImpactSignal = Callable[[OptimizationCandidate, datetime], Awaitable[None]]


class LifecycleAudit(Protocol):
    async def record(
        self,
        event_type: str,
        *,
        optimization_id: str,
        pipeline_config_id: str,
        actor: str = "system",
        details: dict | None = None,
    ) -> Any: ...


@dataclass(frozen=True)
class DuplicateTolerance:
    avg_duration_seconds: float = 30.0
    success_rate_pct: float = 1.0
    time_saved_minutes: float = 0.5

    @classmethod
    def from_settings(cls) -> "DuplicateTolerance":
        return cls(
            avg_duration_seconds=settings.duplicate_duration_tolerance_seconds,
            success_rate_pct=settings.duplicate_success_rate_tolerance,
            time_saved_minutes=settings.duplicate_time_saved_tolerance_minutes,
        )


class PipelineLocks:
    """One asyncio.Lock per pipeline configuration, held only while in use.

    An entry lives as long as some caller holds or waits for it, so the
    registry never grows past the number of pipelines being changed at once.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, pipeline_config_id: str):
        lock = self._locks.setdefault(pipeline_config_id, asyncio.Lock())
        self._users[pipeline_config_id] = self._users.get(pipeline_config_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[pipeline_config_id] -= 1
            if not self._users[pipeline_config_id]:
                del self._users[pipeline_config_id]
                del self._locks[pipeline_config_id]


# Process-wide: every request-scoped manager serializes through the same locks.
pipeline_locks = PipelineLocks()


def new_optimization_id() -> str:
    return f"OPT-{uuid4().hex[:12].upper()}"


def _within(a: float | None, b: float | None, tolerance: float) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(a - b) <= tolerance


class LifecycleManager:
    """Serialized entry points for propose / apply / reject."""

    def __init__(
        self,
        store: OptimizationStore,
        *,
        audit: LifecycleAudit | None = None,
        on_applied: ImpactSignal | None = None,
        locks: PipelineLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
        tolerance: DuplicateTolerance | None = None,
    ):
        self.store = store
        self.audit = audit
        self.on_applied = on_applied
        self.locks = locks or pipeline_locks
        self.clock = clock
        self.tolerance = tolerance or DuplicateTolerance.from_settings()
        self._signal_tasks: set[asyncio.Task] = set()

    # ── Queries ──────────────────────────────────────────────────────────

    async def get(self, optimization_id: str) -> OptimizationCandidate:
        candidate = await self.store.get_candidate(optimization_id)
        if candidate is None:
            raise NotFound("optimization", optimization_id)
        return candidate

    async def list_candidates(
        self, pipeline_config_id: str, status: str | None = None,
    ) -> list[OptimizationCandidate]:
        return await self.store.list_by_status(pipeline_config_id, status)

    # ── Transitions ──────────────────────────────────────────────────────

    async def propose(self, candidate: OptimizationCandidate, *, actor: str = "system") -> OptimizationCandidate:
        """Insert a new pending candidate unless a near-duplicate is pending."""
        pipeline_id = candidate.pipeline_config_id
        async with self.locks.hold(pipeline_id):
            for existing in await self.store.list_by_status(pipeline_id, PENDING):
                if self.is_duplicate(existing, candidate):
                    raise DuplicateProposal(pipeline_id, candidate.optimization_type, existing.optimization_id)

            fresh = replace(
                candidate,
                optimization_id=candidate.optimization_id or new_optimization_id(),
                status=PENDING,
                applied_at=None,
                rejected_at=None,
                created_at=candidate.created_at or self.clock(),
            )
            saved = await self.store.save_candidate(fresh)
            await self._audit("proposed", saved, actor, {
                "optimization_type": saved.optimization_type,
                "confidence_score": saved.confidence_score,
                "title": saved.title,
            })
            await self.store.commit()

        lifecycle_transitions_total.labels(transition="proposed").inc()
        logger.info("Proposed %s (%s) for pipeline %s", saved.optimization_id, saved.optimization_type, pipeline_id)
        return saved

    async def apply(self, optimization_id: str, *, actor: str = "system") -> OptimizationCandidate:
        """pending → applied. Idempotent for candidates that are already applied."""
        found = await self.get(optimization_id)
        pipeline_id = found.pipeline_config_id

        async with self.locks.hold(pipeline_id):
            current = await self.get(optimization_id)
            if current.status == APPLIED:
                logger.info("Apply on %s ignored: already applied at %s", optimization_id, current.applied_at)
                return current
            self._check_transition(current, APPLIED)

            applied_at = self.clock()
            if not await self.store.update_status(optimization_id, APPLIED, applied_at=applied_at):
                return await self._resolve_lost_race(optimization_id, APPLIED)

            updated = replace(current, status=APPLIED, applied_at=applied_at)
            await self._audit("applied", updated, actor, {"applied_at": applied_at.isoformat()})
            await self.store.commit()
            cutover = current_cutover(await self.store.list_by_status(pipeline_id, APPLIED))

        lifecycle_transitions_total.labels(transition="applied").inc()
        logger.info("Applied %s on pipeline %s (cutover %s)", optimization_id, pipeline_id, cutover)
        self._emit_impact_signal(updated, cutover or applied_at)
        return updated

    async def reject(self, optimization_id: str, *, actor: str = "system") -> OptimizationCandidate:
        """pending → rejected. The candidate is kept for the audit trail."""
        found = await self.get(optimization_id)
        pipeline_id = found.pipeline_config_id

        async with self.locks.hold(pipeline_id):
            current = await self.get(optimization_id)
            self._check_transition(current, REJECTED)

            rejected_at = self.clock()
            if not await self.store.update_status(optimization_id, REJECTED, rejected_at=rejected_at):
                return await self._resolve_lost_race(optimization_id, REJECTED)

            updated = replace(current, status=REJECTED, rejected_at=rejected_at)
            await self._audit("rejected", updated, actor, {"rejected_at": rejected_at.isoformat()})
            await self.store.commit()

        lifecycle_transitions_total.labels(transition="rejected").inc()
        logger.info("Rejected %s on pipeline %s", optimization_id, pipeline_id)
        return updated

    # ── Helpers ──────────────────────────────────────────────────────────

    def is_duplicate(self, existing: OptimizationCandidate, proposed: OptimizationCandidate) -> bool:
        if existing.optimization_type != proposed.optimization_type:
            return False
        a, b = existing.projected_metrics, proposed.projected_metrics
        return (
            _within(a.avg_duration_seconds, b.avg_duration_seconds, self.tolerance.avg_duration_seconds)
            and _within(a.success_rate_pct, b.success_rate_pct, self.tolerance.success_rate_pct)
            and _within(a.time_saved_minutes, b.time_saved_minutes, self.tolerance.time_saved_minutes)
        )

    def _check_transition(self, candidate: OptimizationCandidate, target: str) -> None:
        if target not in VALID_TRANSITIONS.get(candidate.status, set()):
            lifecycle_transitions_total.labels(transition="invalid").inc()
            raise InvalidTransition(candidate.optimization_id, candidate.status, target)

    async def _resolve_lost_race(self, optimization_id: str, target: str) -> OptimizationCandidate:
        """Another writer changed the row between our read and our update."""
        winner = await self.get(optimization_id)
        if target == APPLIED and winner.status == APPLIED:
            return winner
        lifecycle_transitions_total.labels(transition="invalid").inc()
        raise InvalidTransition(optimization_id, winner.status, target)

    async def _audit(self, event_type: str, candidate: OptimizationCandidate, actor: str, details: dict) -> None:
        if self.audit is None:
            return
        await self.audit.record(
            event_type,
            optimization_id=candidate.optimization_id,
            pipeline_config_id=candidate.pipeline_config_id,
            actor=actor,
            details=details,
        )

    def _emit_impact_signal(self, candidate: OptimizationCandidate, cutover: datetime) -> None:
        if self.on_applied is None:
            return
        task = asyncio.get_running_loop().create_task(self.on_applied(candidate, cutover))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_done)

    def _signal_done(self, task: asyncio.Task) -> None:
        self._signal_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Impact recompute signal failed: %s", exc)

    async def drain_signals(self) -> None:
        """Wait for outstanding impact signals (shutdown and tests)."""
        if self._signal_tasks:
            await asyncio.gather(*list(self._signal_tasks), return_exceptions=True)
