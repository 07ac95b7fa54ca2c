import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from pipeline_analytics import __version__
from pipeline_analytics.config import settings
from pipeline_analytics.database import async_session, engine
from pipeline_analytics.errors import (
    AnalyticsError,
    DuplicateProposal,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
)
from pipeline_analytics.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from pipeline_analytics.api.audit import router as audit_router  # noqa: E402
from pipeline_analytics.api.optimizations import router as optimizations_router  # noqa: E402
from pipeline_analytics.api.pipelines import router as pipelines_router  # noqa: E402
from pipeline_analytics.middleware.metrics import PrometheusMiddleware  # noqa: E402
from pipeline_analytics.middleware.request_context import RequestContextMiddleware  # noqa: E402
from pipeline_analytics.services.engine import sql_snapshot_fetcher  # noqa: E402
from pipeline_analytics.services.reconciler import ReconcilerRegistry  # noqa: E402

logger = logging.getLogger("pipeline_analytics")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection, start live pollers
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    reconcilers = ReconcilerRegistry(sql_snapshot_fetcher(async_session))
    app.state.reconcilers = reconcilers
    reconcilers.start_live(settings.live_pipelines)
    yield
    # Shutdown
    await reconcilers.stop_all()
    await engine.dispose()


app = FastAPI(
    title="Pipeline Performance Analytics",
    description="CI/CD run analytics, bottleneck detection and optimization lifecycle",
    version=__version__,
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(PrometheusMiddleware)


# ── Error mapping ────────────────────────────────────────────────────────────

def _error_response(status_code: int, exc: AnalyticsError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__, "details": exc.details},
    )


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error_response(404, exc)


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return _error_response(409, exc)


@app.exception_handler(DuplicateProposal)
async def duplicate_proposal_handler(request: Request, exc: DuplicateProposal):
    return _error_response(409, exc)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.warning("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(503, exc)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    logger.error("Unmapped %s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return _error_response(500, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    detail = f"{type(exc).__name__}: {exc}"
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(pipelines_router)
app.include_router(optimizations_router)
app.include_router(audit_router)


@app.get("/metrics", include_in_schema=False)
async def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    reconcilers = getattr(app.state, "reconcilers", None)
    components["pollers"] = {
        "live": settings.live_pipelines,
        "status": "running" if reconcilers is not None else "stopped",
    }

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    _health_cache = {
        "status": overall,
        "version": __version__,
        "environment": settings.environment,
        "components": components,
    }
    _health_cache_ts = now
    return _health_cache
