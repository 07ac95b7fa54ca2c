"""Tests for the impact recompute queue and worker job handling."""

import json
from dataclasses import replace
from datetime import timedelta

import pytest

from pipeline_analytics.services.impact_queue import (
    QUEUE_KEY,
    enqueue_impact_recompute,
    get_cached_report,
)
from tests.fakes import (
    BASE_TIME,
    FakeRedis,
    InMemoryOptimizationStore,
    InMemoryRunStore,
    make_candidate,
    make_run,
)
from worker import process_impact_job, process_next, worker_loop

CUTOVER = BASE_TIME + timedelta(days=2)


def _stores():
    runs = InMemoryRunStore(
        [make_run(i, started_at=CUTOVER - timedelta(hours=5 - i), duration=900.0) for i in range(5)]
        + [make_run(10 + i, started_at=CUTOVER + timedelta(hours=i), duration=600.0) for i in range(5)]
    )
    optimizations = InMemoryOptimizationStore()
    applied = replace(make_candidate("OPT-1"), status="applied", applied_at=CUTOVER)
    optimizations.rows[applied.optimization_id] = applied
    return runs, optimizations


@pytest.mark.asyncio
class TestQueue:
    async def test_enqueue_increments_sequence(self):
        r = FakeRedis()

        first = await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)
        second = await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)

        assert (first, second) == (1, 2)
        job = json.loads(r.lists[QUEUE_KEY][0])
        assert job == {"pipeline_config_id": "PIPE-1", "cutover": CUTOVER.isoformat(), "seq": 2}

    async def test_enqueue_swallows_redis_errors(self):
        assert await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=FakeRedis(fail=True)) is None

    async def test_cached_report_read_failure_returns_none(self):
        assert await get_cached_report("PIPE-1", redis=FakeRedis(fail=True)) is None


@pytest.mark.asyncio
class TestImpactJob:
    async def test_current_job_computes_and_caches(self):
        r = FakeRedis()
        runs, optimizations = _stores()
        seq = await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)

        job = {"pipeline_config_id": "PIPE-1", "cutover": CUTOVER.isoformat(), "seq": seq}
        outcome = await process_impact_job(job, r, runs, optimizations)

        assert outcome == "computed"
        cached = await get_cached_report("PIPE-1", redis=r)
        assert cached.time_saved_minutes == 5.0
        assert cached.cutover == CUTOVER
        assert cached.applied_optimization_ids == ("OPT-1",)
        assert len(cached.samples) == 10

    async def test_superseded_job_is_skipped(self):
        r = FakeRedis()
        runs, optimizations = _stores()
        await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)
        await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)

        job = {"pipeline_config_id": "PIPE-1", "cutover": CUTOVER.isoformat(), "seq": 1}
        assert await process_impact_job(job, r, runs, optimizations) == "superseded"
        assert await get_cached_report("PIPE-1", redis=r) is None

    async def test_moved_cutover_invalidates_job(self):
        r = FakeRedis()
        runs, optimizations = _stores()
        seq = await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)

        stale_premise = (CUTOVER + timedelta(hours=1)).isoformat()
        job = {"pipeline_config_id": "PIPE-1", "cutover": stale_premise, "seq": seq}
        assert await process_impact_job(job, r, runs, optimizations) == "invalidated"


# ── Worker loop ──────────────────────────────────────────────────────────────

class _Session:
    async def __aenter__(self):
        return None

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
class TestWorkerLoop:
    async def test_process_next_on_empty_queue(self):
        runs, optimizations = _stores()
        outcome = await process_next(FakeRedis(), _Session, lambda db: (runs, optimizations))
        assert outcome is None

    async def test_malformed_job_is_dropped(self):
        r = FakeRedis()
        await r.lpush(QUEUE_KEY, "{not json")
        runs, optimizations = _stores()

        assert await process_next(r, _Session, lambda db: (runs, optimizations)) == "failed"
        assert r.lists[QUEUE_KEY] == []

    async def test_loop_survives_redis_error(self):
        r = FakeRedis(fail_once={"get"})
        runs, optimizations = _stores()
        await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)
        await r.lpush(QUEUE_KEY, r.lists[QUEUE_KEY][0])

        await worker_loop(r, _Session, stores=lambda db: (runs, optimizations), retry_delay=0, iterations=2)

        cached = await get_cached_report("PIPE-1", redis=r)
        assert cached is not None
        assert cached.cutover == CUTOVER
        assert r.lists[QUEUE_KEY] == []

    async def test_loop_survives_brpop_error(self):
        r = FakeRedis(fail_once={"brpop"})
        runs, optimizations = _stores()
        await enqueue_impact_recompute("PIPE-1", CUTOVER, redis=r)

        await worker_loop(r, _Session, stores=lambda db: (runs, optimizations), retry_delay=0, iterations=2)

        assert await get_cached_report("PIPE-1", redis=r) is not None
