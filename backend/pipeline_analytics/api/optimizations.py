"""
Optimizations API — lifecycle decisions on a single candidate.

GET  /api/optimizations/{id}
POST /api/optimizations/{id}/apply
POST /api/optimizations/{id}/reject
GET  /api/optimizations/{id}/history
"""

from fastapi import APIRouter, Depends

from pipeline_analytics.api.deps import get_audit, get_engine, require
from pipeline_analytics.auth.context import RequestContext
from pipeline_analytics.auth.permissions import Permission
from pipeline_analytics.schemas.schemas import LifecycleEventOut, OptimizationOut
from pipeline_analytics.services.audit_service import LifecycleAuditService
from pipeline_analytics.services.engine import AnalyticsEngine

router = APIRouter(prefix="/api/optimizations", tags=["optimizations"])


@router.get("/{optimization_id}", response_model=OptimizationOut)
async def get_optimization(
    optimization_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_READ)),
):
    return OptimizationOut.model_validate(await engine.lifecycle.get(optimization_id))


@router.post("/{optimization_id}/apply", response_model=OptimizationOut)
async def apply_optimization(
    optimization_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
):
    """Mark a pending candidate applied. Repeating the call returns the applied record."""
    return OptimizationOut.model_validate(await engine.apply(optimization_id, actor=ctx.actor))


@router.post("/{optimization_id}/reject", response_model=OptimizationOut)
async def reject_optimization(
    optimization_id: str,
    engine: AnalyticsEngine = Depends(get_engine),
    ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE)),
):
    return OptimizationOut.model_validate(await engine.reject(optimization_id, actor=ctx.actor))


@router.get("/{optimization_id}/history", response_model=list[LifecycleEventOut])
async def optimization_history(
    optimization_id: str,
    audit: LifecycleAuditService = Depends(get_audit),
    ctx: RequestContext = Depends(require(Permission.AUDIT_READ)),
):
    return [LifecycleEventOut.model_validate(e) for e in await audit.history(optimization_id)]
