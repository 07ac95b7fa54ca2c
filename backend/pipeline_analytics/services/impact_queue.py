"""
Impact recompute queue backed by Redis.

Applying an optimization pushes a recompute job for its pipeline. Each job
carries a per-pipeline sequence number so the worker can skip jobs that a newer
one has superseded. Finished reports are cached for the stale fallback used
when the run store is unreachable.

The signal is best-effort: Redis failures are logged and the report stays
recomputable on demand.
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

from pipeline_analytics.analytics.types import ImpactReport, OptimizationCandidate, as_utc
from pipeline_analytics.config import settings

logger = logging.getLogger(__name__)

QUEUE_KEY = "pipeline_analytics:impact:queue"
SEQ_KEY_PREFIX = "pipeline_analytics:impact:seq:"
REPORT_KEY_PREFIX = "pipeline_analytics:impact:report:"

_report_adapter = TypeAdapter(ImpactReport)


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


async def enqueue_impact_recompute(
    pipeline_config_id: str,
    cutover: datetime,
    *,
    redis: aioredis.Redis | None = None,
) -> int | None:
    """Push a recompute job; returns its sequence number, or None if Redis is down."""
    r = redis or await get_redis()
    try:
        seq = await r.incr(f"{SEQ_KEY_PREFIX}{pipeline_config_id}")
        await r.lpush(QUEUE_KEY, json.dumps({
            "pipeline_config_id": pipeline_config_id,
            "cutover": as_utc(cutover).isoformat(),
            "seq": seq,
        }))
    except (RedisError, OSError) as exc:
        logger.warning("Could not enqueue impact recompute for %s: %s", pipeline_config_id, exc)
        return None
    finally:
        if redis is None:
            await r.aclose()
    logger.info("Queued impact recompute #%d for %s (cutover %s)", seq, pipeline_config_id, cutover)
    return seq


async def signal_impact_recompute(candidate: OptimizationCandidate, cutover: datetime) -> None:
    """Lifecycle on_applied hook."""
    await enqueue_impact_recompute(candidate.pipeline_config_id, cutover)


async def latest_sequence(r: aioredis.Redis, pipeline_config_id: str) -> int:
    value = await r.get(f"{SEQ_KEY_PREFIX}{pipeline_config_id}")
    return int(value) if value else 0


async def store_cached_report(
    report: ImpactReport,
    *,
    redis: aioredis.Redis | None = None,
) -> None:
    r = redis or await get_redis()
    try:
        await r.set(
            f"{REPORT_KEY_PREFIX}{report.pipeline_config_id}",
            _report_adapter.dump_json(report).decode(),
            ex=settings.impact_cache_ttl_seconds,
        )
    except (RedisError, OSError) as exc:
        logger.warning("Could not cache impact report for %s: %s", report.pipeline_config_id, exc)
    finally:
        if redis is None:
            await r.aclose()


async def get_cached_report(
    pipeline_config_id: str,
    *,
    redis: aioredis.Redis | None = None,
) -> ImpactReport | None:
    r = redis or await get_redis()
    try:
        raw = await r.get(f"{REPORT_KEY_PREFIX}{pipeline_config_id}")
    except (RedisError, OSError) as exc:
        logger.warning("Could not read cached impact report for %s: %s", pipeline_config_id, exc)
        return None
    finally:
        if redis is None:
            await r.aclose()
    if not raw:
        return None
    try:
        return _report_adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning("Discarding unreadable cached impact report for %s: %s", pipeline_config_id, exc)
        return None
