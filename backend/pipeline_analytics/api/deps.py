"""
API Dependencies — DB session, auth context, permission guards, engine wiring.

`get_request_context`:
  1. Extracts the Bearer token from the Authorization header
  2. Decodes and validates the JWT
  3. Resolves role → permissions via ROLE_PERMISSIONS

Auth-exempt paths (no token required): /api/health, /metrics
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from pipeline_analytics.auth.context import RequestContext
from pipeline_analytics.auth.jwt import decode_access_token
from pipeline_analytics.auth.permissions import Permission
from pipeline_analytics.auth.roles import ROLE_PERMISSIONS, Role
from pipeline_analytics.database import async_session
from pipeline_analytics.services.advisor import HttpAdvisor
from pipeline_analytics.services.audit_service import LifecycleAuditService
from pipeline_analytics.services.engine import AnalyticsEngine
from pipeline_analytics.services.impact_queue import (
    get_cached_report,
    signal_impact_recompute,
    store_cached_report,
)
from pipeline_analytics.services.lifecycle import LifecycleManager
from pipeline_analytics.services.optimization_store import SqlOptimizationStore
from pipeline_analytics.services.reconciler import ReconcilerRegistry
from pipeline_analytics.services.run_store import RunStore, SqlRunStore

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {
    "/api/health",
    "/metrics",
}


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Request context (JWT authentication) ──────────────────────────────────────

async def get_request_context(request: Request) -> RequestContext:
    path = request.url.path.rstrip("/")
    if path in AUTH_EXEMPT_PATHS:
        return RequestContext(
            user_id="anonymous",
            role=Role.VIEWER,
            permissions=ROLE_PERMISSIONS[Role.VIEWER],
        )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    token = auth_header[7:]  # strip "Bearer "
    try:
        claims = decode_access_token(token)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = claims.get("sub", "anonymous")
    try:
        role = Role(claims.get("role", "viewer"))
    except ValueError:
        role = Role.VIEWER

    return RequestContext(
        user_id=user_id,
        role=role,
        permissions=ROLE_PERMISSIONS.get(role, set()),
    )


# ── Permission guards ────────────────────────────────────────────────────────

def require(*perms: Permission):
    """
    FastAPI dependency that checks the caller has ALL listed permissions.

    Usage:
        @router.post("/{optimization_id}/apply")
        async def apply(ctx: RequestContext = Depends(require(Permission.OPTIMIZATIONS_MANAGE))):
            ...
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        for p in perms:
            ctx.require_permission(p)
        return ctx
    return _check


# ── Engine wiring ────────────────────────────────────────────────────────────

def get_reconcilers(request: Request) -> ReconcilerRegistry | None:
    """Process-wide registry installed by the app lifespan."""
    return getattr(request.app.state, "reconcilers", None)


def get_run_store(db: AsyncSession = Depends(get_db)) -> RunStore:
    return SqlRunStore(db)


def get_audit(db: AsyncSession = Depends(get_db)) -> LifecycleAuditService:
    return LifecycleAuditService(db)


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    audit: LifecycleAuditService = Depends(get_audit),
) -> LifecycleManager:
    return LifecycleManager(
        SqlOptimizationStore(db),
        audit=audit,
        on_applied=signal_impact_recompute,
    )


def get_engine(
    runs: RunStore = Depends(get_run_store),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
    reconcilers: ReconcilerRegistry | None = Depends(get_reconcilers),
) -> AnalyticsEngine:
    return AnalyticsEngine(
        runs=runs,
        lifecycle=lifecycle,
        advisor=HttpAdvisor(),
        reconcilers=reconcilers,
        load_cached_report=get_cached_report,
        save_report=store_cached_report,
    )
