"""
Impact worker — recomputes impact reports queued when optimizations are applied.

Run with: python worker.py
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pipeline_analytics.analytics.impact import analyze_impact, current_cutover
from pipeline_analytics.analytics.types import LifecycleStatus, as_utc
from pipeline_analytics.config import settings
from pipeline_analytics.errors import StoreUnavailable
from pipeline_analytics.middleware.logging_config import configure_logging
from pipeline_analytics.middleware.metrics import impact_jobs_total
from pipeline_analytics.services.impact_queue import QUEUE_KEY, latest_sequence, store_cached_report
from pipeline_analytics.services.optimization_store import OptimizationStore, SqlOptimizationStore
from pipeline_analytics.services.run_store import RunStore, SqlRunStore

logger = logging.getLogger("worker")


async def process_impact_job(
    job_data: dict,
    r: aioredis.Redis,
    runs: RunStore,
    optimizations: OptimizationStore,
) -> str:
    """Recompute one pipeline's report. Returns the job outcome."""
    pipeline_id = job_data["pipeline_config_id"]
    seq = int(job_data.get("seq", 0))
    job_cutover = as_utc(datetime.fromisoformat(job_data["cutover"]))

    newest = await latest_sequence(r, pipeline_id)
    if seq < newest:
        logger.info("Skipping impact job #%d for %s: superseded by #%d", seq, pipeline_id, newest)
        return "superseded"

    applied = await optimizations.list_by_status(pipeline_id, LifecycleStatus.APPLIED.value)
    cutover = current_cutover(applied)
    if cutover != job_cutover:
        logger.info(
            "Skipping impact job #%d for %s: cutover moved from %s to %s",
            seq, pipeline_id, job_cutover, cutover,
        )
        return "invalidated"

    history = await runs.list_runs(pipeline_id, limit=None)
    report = analyze_impact(pipeline_id, history, applied, cost_per_minute=settings.cost_per_minute)
    await store_cached_report(report, redis=r)
    logger.info(
        "Impact report for %s: %d before / %d after, time saved %s min",
        pipeline_id, report.before.total, report.after.total, report.time_saved_minutes,
    )
    return "computed"


StoreFactory = Callable[[Any], tuple[RunStore, OptimizationStore]]


def sql_stores(db) -> tuple[RunStore, OptimizationStore]:
    return SqlRunStore(db), SqlOptimizationStore(db)


async def process_next(r: aioredis.Redis, session_factory, stores: StoreFactory = sql_stores) -> str | None:
    """Pop one job and handle it. Returns the outcome, or None when the queue was empty."""
    result = await r.brpop(QUEUE_KEY, timeout=5)
    if result is None:
        return None
    _, raw = result
    try:
        job_data = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Dropping malformed impact job: %r", raw)
        impact_jobs_total.labels(outcome="failed").inc()
        return "failed"

    async with session_factory() as db:
        runs, optimizations = stores(db)
        try:
            outcome = await process_impact_job(job_data, r, runs, optimizations)
        except (StoreUnavailable, KeyError, ValueError) as exc:
            logger.error("Impact job for %s failed: %s", job_data.get("pipeline_config_id"), exc, exc_info=True)
            outcome = "failed"
    impact_jobs_total.labels(outcome=outcome).inc()
    return outcome


async def worker_loop(
    r: aioredis.Redis,
    session_factory,
    *,
    stores: StoreFactory = sql_stores,
    retry_delay: float = 1.0,
    iterations: int | None = None,
) -> None:
    """Keep popping jobs; any error is logged and the loop carries on after ``retry_delay``."""
    done = 0
    while iterations is None or done < iterations:
        done += 1
        try:
            await process_next(r, session_factory, stores)
        except Exception as exc:
            logger.error("Worker loop error: %s", exc, exc_info=True)
            impact_jobs_total.labels(outcome="failed").inc()
            await asyncio.sleep(retry_delay)


async def main():
    """Main worker loop: polls the Redis queue for impact jobs."""
    configure_logging(settings.log_level, settings.log_format)

    engine = create_async_engine(settings.database_url, echo=False)
    SessionMaker = async_sessionmaker(engine, expire_on_commit=False)

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", QUEUE_KEY)

    try:
        await worker_loop(r, SessionMaker)
    finally:
        await r.aclose()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
