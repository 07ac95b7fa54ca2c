"""
Pipelines API — per-pipeline analytics views.

GET  /api/pipelines/{id}/dashboard
  Aggregate stats, ranked bottlenecks and current candidates
GET  /api/pipelines/{id}/impact
  Before/after comparison around the earliest applied optimization
POST /api/pipelines/{id}/analyze
  Run an advisor pass and propose its suggestions
GET  /api/pipelines/{id}/optimizations?status=
  Candidates for the pipeline, optionally filtered by status
GET  /api/pipelines/{id}/runs?limit=
  Most recent runs, newest first
"""

from fastapi import APIRouter, Depends, Query

from pipeline_analytics.api.deps import get_engine, get_run_store, require
from pipeline_analytics.auth.context import RequestContext
from pipeline_analytics.auth.permissions import Permission
from pipeline_analytics.schemas.schemas import (
    AnalysisResponse,
    DashboardResponse,
    ImpactReportOut,
    OptimizationListResponse,
    OptimizationOut,
    RunListResponse,
    RunOut,
)
from pipeline_analytics.services.engine import AnalyticsEngine
from pipeline_analytics.services.run_store import RunStore

router = APIRouter(prefix="/api/pipelines", tags=["pipelines"])


@router.get("/{pipeline_config_id}/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    pipeline_config_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.DASHBOARD_VIEW)),
):
    dashboard = await engine.get_dashboard(pipeline_config_id)
    return DashboardResponse.model_validate(dashboard)


@router.get("/{pipeline_config_id}/impact", response_model=ImpactReportOut)
async def get_impact(
    pipeline_config_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.DASHBOARD_VIEW)),
):
    report = await engine.get_impact_report(pipeline_config_id)
    return ImpactReportOut.model_validate(report)


@router.post("/{pipeline_config_id}/analyze", response_model=AnalysisResponse)
async def analyze(
    pipeline_config_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_ANALYZE)),
):
    result = await engine.analyze(pipeline_config_id, actor=ctx.actor)
    return AnalysisResponse.model_validate(result)


@router.get("/{pipeline_config_id}/optimizations", response_model=OptimizationListResponse)
async def list_optimizations(
    pipeline_config_id: str,
    status: str | None = Query(None, pattern="^(pending|applied|rejected)$"),
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
):
    candidates = await engine.lifecycle.list_candidates(pipeline_config_id, status)
    return OptimizationListResponse(
        pipeline_config_id=pipeline_config_id,
        status=status,
        items=[OptimizationOut.model_validate(c) for c in candidates],
    )


@router.get("/{pipeline_config_id}/runs", response_model=RunListResponse)
async def list_runs(
    pipeline_config_id: str,
    limit: int = Query(50, ge=1, le=500),
    runs: RunStore = Depends(get_run_store),
    ctx: RequestContext = Depends(require(Permission.RUNS_READ)),
):
    records = await runs.list_runs(pipeline_config_id, limit=limit)
    return RunListResponse(
        pipeline_config_id=pipeline_config_id,
        total=len(records),
        runs=[RunOut.model_validate(r) for r in reversed(records)],
    )
