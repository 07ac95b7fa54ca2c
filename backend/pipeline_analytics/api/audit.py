"""
Audit API: integrity check over the lifecycle event chain.

GET /api/audit/verify
"""

from fastapi import APIRouter, Depends

from pipeline_analytics.api.deps import get_audit, require
from pipeline_analytics.auth.context import RequestContext
from pipeline_analytics.auth.permissions import Permission
from pipeline_analytics.services.audit_service import LifecycleAuditService

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/verify")
async def verify_audit_chain(
    audit: LifecycleAuditService = Depends(get_audit),
    ctx: RequestContext = Depends(require(Permission.ADMIN_SYSTEM)),
):
    return await audit.verify_chain_integrity()
