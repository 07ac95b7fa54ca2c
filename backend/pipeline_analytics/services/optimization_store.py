"""
Optimization Store: persistence of candidates and their status transitions.

Status changes use a compare-and-set UPDATE (``WHERE status = expected``) so
two processes racing on the same candidate cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pipeline_analytics.analytics.types import (
    CurrentMetrics,
    LifecycleStatus,
    OptimizationCandidate,
    ProjectedMetrics,
    as_utc,
)
from pipeline_analytics.errors import StoreUnavailable
from pipeline_analytics.models import PipelineOptimization

logger = logging.getLogger(__name__)


class OptimizationStore(Protocol):
    async def save_candidate(self, candidate: OptimizationCandidate) -> OptimizationCandidate: ...

    async def get_candidate(self, optimization_id: str) -> OptimizationCandidate | None: ...

    async def update_status(
        self,
        optimization_id: str,
        status: str,
        *,
        applied_at: datetime | None = None,
        rejected_at: datetime | None = None,
        expected_status: str = LifecycleStatus.PENDING.value,
    ) -> bool: ...

    async def list_by_status(
        self, pipeline_config_id: str, status: str | None = None,
    ) -> list[OptimizationCandidate]: ...

    async def commit(self) -> None: ...


def _opt_float(value) -> float | None:
    return None if value is None else float(value)


def candidate_from_row(row: PipelineOptimization) -> OptimizationCandidate:
    current = row.current_metrics or {}
    projected = row.projected_metrics or {}
    return OptimizationCandidate(
        optimization_id=row.optimization_id,
        pipeline_config_id=row.pipeline_config_id,
        optimization_type=row.optimization_type,
        title=row.title,
        description=row.description or "",
        confidence_score=float(row.confidence_score),
        current_metrics=CurrentMetrics(
            avg_duration_seconds=_opt_float(current.get("avg_duration_seconds")),
            success_rate_pct=_opt_float(current.get("success_rate_pct")),
        ),
        projected_metrics=ProjectedMetrics(
            avg_duration_seconds=_opt_float(projected.get("avg_duration_seconds")),
            success_rate_pct=_opt_float(projected.get("success_rate_pct")),
            time_saved_minutes=_opt_float(projected.get("time_saved_minutes")),
        ),
        implementation_steps=tuple(row.implementation_steps or ()),
        code_changes=dict(row.code_changes or {}),
        status=row.status,
        applied_at=as_utc(row.applied_at) if row.applied_at else None,
        rejected_at=as_utc(row.rejected_at) if row.rejected_at else None,
        created_at=as_utc(row.created_at) if row.created_at else None,
    )


class SqlOptimizationStore:
    """OptimizationStore over the pipeline_optimizations table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save_candidate(self, candidate: OptimizationCandidate) -> OptimizationCandidate:
        row = PipelineOptimization(
            optimization_id=candidate.optimization_id,
            pipeline_config_id=candidate.pipeline_config_id,
            optimization_type=candidate.optimization_type,
            title=candidate.title,
            description=candidate.description,
            confidence_score=candidate.confidence_score,
            current_metrics={
                "avg_duration_seconds": candidate.current_metrics.avg_duration_seconds,
                "success_rate_pct": candidate.current_metrics.success_rate_pct,
            },
            projected_metrics={
                "avg_duration_seconds": candidate.projected_metrics.avg_duration_seconds,
                "success_rate_pct": candidate.projected_metrics.success_rate_pct,
                "time_saved_minutes": candidate.projected_metrics.time_saved_minutes,
            },
            implementation_steps=list(candidate.implementation_steps),
            code_changes=dict(candidate.code_changes),
            status=candidate.status,
            applied_at=candidate.applied_at,
            rejected_at=candidate.rejected_at,
        )
        if candidate.created_at is not None:
            row.created_at = candidate.created_at
        try:
            self.session.add(row)
            await self.session.flush()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(candidate.pipeline_config_id, "save_candidate", exc) from exc
        return candidate_from_row(row)

    async def get_candidate(self, optimization_id: str) -> OptimizationCandidate | None:
        try:
            result = await self.session.execute(
                select(PipelineOptimization)
                .where(PipelineOptimization.optimization_id == optimization_id)
                .execution_options(populate_existing=True)
            )
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(None, "get_candidate", exc) from exc
        row = result.scalar_one_or_none()
        return candidate_from_row(row) if row else None

    async def update_status(
        self,
        optimization_id: str,
        status: str,
        *,
        applied_at: datetime | None = None,
        rejected_at: datetime | None = None,
        expected_status: str = LifecycleStatus.PENDING.value,
    ) -> bool:
        values: dict = {"status": status}
        if applied_at is not None:
            values["applied_at"] = applied_at
        if rejected_at is not None:
            values["rejected_at"] = rejected_at
        stmt = (
            update(PipelineOptimization)
            .where(
                PipelineOptimization.optimization_id == optimization_id,
                PipelineOptimization.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(None, "update_status", exc) from exc
        return result.rowcount == 1

    async def list_by_status(
        self, pipeline_config_id: str, status: str | None = None,
    ) -> list[OptimizationCandidate]:
        stmt = select(PipelineOptimization).where(
            PipelineOptimization.pipeline_config_id == pipeline_config_id
        )
        if status is not None:
            stmt = stmt.where(PipelineOptimization.status == status)
        stmt = stmt.order_by(PipelineOptimization.created_at.asc(), PipelineOptimization.id.asc())
        try:
            rows = list((await self.session.execute(
                stmt.execution_options(populate_existing=True)
            )).scalars())
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(pipeline_config_id, "list_by_status", exc) from exc
        return [candidate_from_row(r) for r in rows]

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except (SQLAlchemyError, OSError) as exc:
            await self.session.rollback()
            raise StoreUnavailable(None, "commit", exc) from exc
