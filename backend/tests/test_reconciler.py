"""Tests for the polling reconciler's ordering and staleness rules."""

import asyncio

import pytest

from pipeline_analytics.errors import StoreUnavailable
from pipeline_analytics.services.reconciler import PollingReconciler, ReconcilerRegistry


class ScriptedFetch:
    """Returns numbered responses; selected calls hang or fail."""

    def __init__(self, hang=(), fail=()):
        self.calls = 0
        self.hang = set(hang)
        self.fail = set(fail)

    async def __call__(self):
        self.calls += 1
        n = self.calls
        if n in self.hang:
            await asyncio.Event().wait()
        if n in self.fail:
            raise StoreUnavailable("PIPE-1", "list_runs")
        return f"response-{n}"


@pytest.mark.asyncio
class TestRefresh:
    async def test_refresh_replaces_snapshot(self):
        reconciler = PollingReconciler(ScriptedFetch(), interval=60)

        first = await reconciler.refresh()
        second = await reconciler.refresh()

        assert (first.data, first.seq) == ("response-1", 1)
        assert (second.data, second.seq) == ("response-2", 2)
        assert reconciler.snapshot is second
        assert not second.stale

    async def test_failure_keeps_last_snapshot_as_stale(self):
        reconciler = PollingReconciler(ScriptedFetch(fail={2}), interval=60)
        await reconciler.refresh()

        snapshot = await reconciler.refresh()

        assert snapshot.stale
        assert snapshot.data == "response-1"
        assert snapshot.seq == 1
        assert "Store unavailable" in snapshot.error

    async def test_recovery_clears_staleness(self):
        reconciler = PollingReconciler(ScriptedFetch(fail={2}), interval=60)
        await reconciler.refresh()
        await reconciler.refresh()

        snapshot = await reconciler.refresh()

        assert not snapshot.stale
        assert snapshot.data == "response-3"

    async def test_failure_without_snapshot_propagates(self):
        reconciler = PollingReconciler(ScriptedFetch(fail={1}), interval=60)
        with pytest.raises(StoreUnavailable):
            await reconciler.refresh()
        assert reconciler.snapshot is None

    async def test_hung_fetch_is_cancelled_after_interval(self):
        fetch = ScriptedFetch(hang={1})
        reconciler = PollingReconciler(fetch, interval=0.01)

        slow = asyncio.create_task(reconciler.refresh())
        await asyncio.sleep(0.03)
        fast = await reconciler.refresh()
        settled = await slow

        assert fast.data == "response-2"
        assert settled is fast
        assert reconciler.discarded_responses == 1
        assert reconciler.latest_seq == 2

    async def test_concurrent_refreshes_share_one_fetch(self):
        fetch = SlowFetch(delay=0.05)
        reconciler = PollingReconciler(fetch, interval=60)

        first, second = await asyncio.gather(reconciler.refresh(), reconciler.refresh())

        assert first is second
        assert fetch.calls == 1
        assert reconciler.discarded_responses == 0

    async def test_callers_answered_under_steady_overlapping_load(self):
        fetch = SlowFetch(delay=0.05)
        reconciler = PollingReconciler(fetch, interval=1.0)

        callers = []
        for _ in range(20):
            callers.append(asyncio.create_task(reconciler.refresh()))
            await asyncio.sleep(0.02)
        answered_during_load = sum(task.done() for task in callers)
        results = await asyncio.gather(*callers)

        assert answered_during_load >= 10
        assert fetch.calls < 20
        assert all(not snapshot.stale for snapshot in results)
        assert reconciler.discarded_responses == 0


class SlowFetch:
    def __init__(self, delay: float):
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        n = self.calls
        await asyncio.sleep(self.delay)
        return f"response-{n}"


@pytest.mark.asyncio
class TestPolling:
    async def test_start_and_stop(self):
        fetch = ScriptedFetch()
        reconciler = PollingReconciler(fetch, interval=0.01)

        reconciler.start()
        assert reconciler.running
        await asyncio.sleep(0.05)
        await reconciler.stop()

        assert not reconciler.running
        assert fetch.calls >= 2
        assert reconciler.snapshot is not None

    async def test_poll_survives_failures(self):
        fetch = ScriptedFetch(fail={1})
        reconciler = PollingReconciler(fetch, interval=0.01)

        reconciler.start()
        await asyncio.sleep(0.05)
        await reconciler.stop()

        assert fetch.calls >= 2
        assert reconciler.snapshot is not None


@pytest.mark.asyncio
class TestRegistry:
    async def test_one_reconciler_per_pipeline(self):
        created = []

        def fetch_for(pipeline_config_id):
            created.append(pipeline_config_id)
            return ScriptedFetch()

        registry = ReconcilerRegistry(fetch_for, interval=60)

        assert registry.get("PIPE-1") is registry.get("PIPE-1")
        assert registry.get("PIPE-2") is not registry.get("PIPE-1")
        assert created == ["PIPE-1", "PIPE-2"]

    async def test_idle_reconcilers_are_evicted_beyond_capacity(self):
        registry = ReconcilerRegistry(lambda pid: ScriptedFetch(), interval=60, max_entries=3)

        for n in range(10):
            await registry.get(f"PIPE-{n}").refresh()

        assert len(registry) == 3
        assert "PIPE-9" in registry
        assert "PIPE-0" not in registry

    async def test_recently_used_and_live_reconcilers_are_kept(self):
        registry = ReconcilerRegistry(lambda pid: ScriptedFetch(), interval=60, max_entries=2)
        registry.start_live(["LIVE"])
        registry.get("PIPE-A")

        registry.get("PIPE-B")
        registry.get("PIPE-C")

        assert "LIVE" in registry
        assert "PIPE-C" in registry
        assert "PIPE-A" not in registry
        await registry.stop_all()

    async def test_start_live_and_stop_all(self):
        registry = ReconcilerRegistry(lambda pid: ScriptedFetch(), interval=0.01)

        registry.start_live(["PIPE-1", "PIPE-2"])
        assert registry.get("PIPE-1").running
        await registry.stop_all()

        assert not registry.get("PIPE-1").running
        assert not registry.get("PIPE-2").running
