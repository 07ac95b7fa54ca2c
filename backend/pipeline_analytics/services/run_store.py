"""
Run Store Adapter — read-only access to pipeline runs and quality checks.

Runs are returned oldest first, limited to the most recent ``limit`` rows.
Database failures surface as StoreUnavailable with the pipeline id and the
operation that failed.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pipeline_analytics.analytics.types import QualityCheckRecord, QualityIssue, RunRecord, as_utc
from pipeline_analytics.errors import StoreUnavailable
from pipeline_analytics.models import PipelineRun, QualityCheck

logger = logging.getLogger(__name__)


class RunStore(Protocol):
    async def list_runs(self, pipeline_config_id: str, limit: int | None = None) -> list[RunRecord]: ...

    async def list_quality_checks(self, run_id: str) -> list[QualityCheckRecord]: ...


def run_from_row(row: PipelineRun) -> RunRecord:
    return RunRecord(
        run_id=row.run_id,
        pipeline_config_id=row.pipeline_config_id,
        status=row.status,
        started_at=as_utc(row.started_at),
        duration_seconds=float(row.duration_seconds) if row.duration_seconds is not None else None,
        branch=row.branch,
        commit_sha=row.commit_sha,
        triggered_by=row.triggered_by,
        error_message=row.error_message,
    )


def quality_check_from_row(row: QualityCheck) -> QualityCheckRecord:
    issues = tuple(
        QualityIssue(
            severity=str(i.get("severity", "info")),
            rule=str(i.get("rule", "")),
            message=str(i.get("message", "")),
            location=i.get("location"),
        )
        for i in (row.issues or [])
        if isinstance(i, dict)
    )
    return QualityCheckRecord(
        check_id=row.check_id,
        run_id=row.run_id,
        tool=row.tool,
        gate_passed=bool(row.gate_passed),
        score=float(row.score or 0),
        issues=issues,
    )


class SqlRunStore:
    """RunStore over the pipeline_runs / quality_checks tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_runs(self, pipeline_config_id: str, limit: int | None = None) -> list[RunRecord]:
        stmt = (
            select(PipelineRun)
            .where(PipelineRun.pipeline_config_id == pipeline_config_id)
            .order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            rows = list((await self.session.execute(stmt)).scalars())
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("list_runs failed for %s: %s", pipeline_config_id, exc)
            raise StoreUnavailable(pipeline_config_id, "list_runs", exc) from exc
        return [run_from_row(r) for r in reversed(rows)]

    async def list_quality_checks(self, run_id: str) -> list[QualityCheckRecord]:
        stmt = (
            select(QualityCheck)
            .where(QualityCheck.run_id == run_id)
            .order_by(QualityCheck.id)
        )
        try:
            rows = list((await self.session.execute(stmt)).scalars())
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("list_quality_checks failed for run %s: %s", run_id, exc)
            raise StoreUnavailable(None, "list_quality_checks", exc) from exc
        return [quality_check_from_row(r) for r in rows]
