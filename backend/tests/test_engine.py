"""Tests for the analytics engine facade."""

from dataclasses import replace
from datetime import timedelta

import pytest

from pipeline_analytics.errors import AdvisorTimeout, AdvisorUnavailable, StoreUnavailable
from pipeline_analytics.services.engine import AnalyticsEngine, load_pipeline_snapshot
from pipeline_analytics.services.reconciler import ReconcilerRegistry
from tests.fakes import BASE_TIME, FakeAdvisor, make_candidate, make_run


def _failing_history(run_store, count=10):
    run_store.runs = [
        make_run(i, started_at=BASE_TIME + timedelta(days=i),
                 status="failed" if i % 2 else "success", error_message="npm install failed")
        for i in range(count)
    ]


# ── Dashboard ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestDashboard:
    async def test_dashboard_combines_stats_bottlenecks_and_candidates(self, engine, run_store, lifecycle):
        _failing_history(run_store)
        await lifecycle.propose(make_candidate())

        dashboard = await engine.get_dashboard("PIPE-1")

        assert dashboard.stats.total == 10
        assert dashboard.stats.success_rate == 50.0
        assert "high_failure_rate" in [b.kind for b in dashboard.bottlenecks]
        assert len(dashboard.candidates) == 1
        assert not dashboard.stale

    async def test_daily_series_ends_today_for_quiet_pipeline(self, engine, run_store, clock):
        run_store.runs = [make_run(i, started_at=clock.now - timedelta(days=60, hours=i)) for i in range(10)]

        dashboard = await engine.get_dashboard("PIPE-1")

        assert dashboard.stats.daily[-1].day == clock.now.date()
        assert all(point.total == 0 for point in dashboard.stats.daily)
        assert dashboard.stats.total == 10

    async def test_store_outage_without_snapshot_raises(self, engine, run_store):
        run_store.fail = True
        with pytest.raises(StoreUnavailable):
            await engine.get_dashboard("PIPE-1")

    async def test_reconciled_dashboard_goes_stale_on_outage(self, run_store, lifecycle):
        _failing_history(run_store)

        def fetch_for(pipeline_config_id):
            async def fetch():
                return await load_pipeline_snapshot(run_store, lifecycle.store, pipeline_config_id)
            return fetch

        engine = AnalyticsEngine(runs=run_store, lifecycle=lifecycle,
                                 reconcilers=ReconcilerRegistry(fetch_for, interval=60))
        fresh = await engine.get_dashboard("PIPE-1")
        run_store.fail = True
        stale = await engine.get_dashboard("PIPE-1")

        assert not fresh.stale
        assert stale.stale
        assert stale.stats == fresh.stats
        assert stale.error

    async def test_quality_checks_limited_to_recent_runs(self, run_store, opt_store):
        _failing_history(run_store, count=30)
        seen = []
        original = run_store.list_quality_checks

        async def tracking(run_id):
            seen.append(run_id)
            return await original(run_id)

        run_store.list_quality_checks = tracking
        await load_pipeline_snapshot(run_store, opt_store, "PIPE-1", quality_run_limit=20)

        assert len(seen) == 20
        assert seen[-1] == "RUN-0029"


# ── Advisor pass ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyze:
    async def test_proposes_advisor_suggestions(self, engine, run_store, advisor, audit):
        _failing_history(run_store)
        advisor.suggestions = [make_candidate(), make_candidate(optimization_type="parallelization")]

        result = await engine.analyze("PIPE-1", actor="engineer:eng-1")

        assert result.advisor_status == "ok"
        assert len(result.proposed) == 2
        assert result.skipped_duplicates == 0
        assert all(e["actor"] == "engineer:eng-1" for e in audit.events)

    async def test_summary_totals_proposals_and_critical_bottlenecks(self, engine, run_store, advisor):
        _failing_history(run_store)
        advisor.suggestions = [
            make_candidate(time_saved=2.0),
            make_candidate(optimization_type="parallelization", time_saved=3.5),
            make_candidate(optimization_type="build_optimization", time_saved=None),
        ]

        result = await engine.analyze("PIPE-1")
        summary = result.summary

        assert summary.total_runs == 10
        assert summary.avg_duration_minutes == 10.0
        assert summary.success_rate == 50.0
        assert summary.potential_time_saved_minutes == 5.5
        assert summary.critical_bottlenecks == sum(
            1 for b in result.dashboard.bottlenecks if b.severity == "high"
        )
        assert summary.critical_bottlenecks >= 1

    async def test_summary_without_proposals(self, engine, run_store, advisor):
        _failing_history(run_store)
        advisor.error = AdvisorTimeout("PIPE-1", 20.0)

        summary = (await engine.analyze("PIPE-1")).summary

        assert summary.potential_time_saved_minutes == 0.0
        assert summary.total_runs == 10

    async def test_duplicates_are_skipped(self, engine, run_store, advisor):
        _failing_history(run_store)
        advisor.suggestions = [make_candidate(), make_candidate(avg_duration=490.0)]

        result = await engine.analyze("PIPE-1")

        assert len(result.proposed) == 1
        assert result.skipped_duplicates == 1

    @pytest.mark.parametrize("error, status", [
        (AdvisorTimeout("PIPE-1", 20.0), "timeout"),
        (AdvisorUnavailable("PIPE-1", "HTTP 503"), "unavailable"),
    ])
    async def test_advisor_failure_degrades_to_bottlenecks(self, engine, run_store, advisor, error, status):
        _failing_history(run_store)
        advisor.error = error

        result = await engine.analyze("PIPE-1")

        assert result.advisor_status == status
        assert result.proposed == []
        assert result.dashboard.bottlenecks

    async def test_insufficient_data_skips_advisor(self, engine, run_store, advisor):
        _failing_history(run_store, count=3)

        result = await engine.analyze("PIPE-1")

        assert result.advisor_status == "insufficient_data"
        assert advisor.calls == 0
        assert result.dashboard.bottlenecks == []

    async def test_no_advisor_configured(self, run_store, lifecycle):
        _failing_history(run_store)
        engine = AnalyticsEngine(runs=run_store, lifecycle=lifecycle)
        assert (await engine.analyze("PIPE-1")).advisor_status == "disabled"


# ── Impact ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestImpact:
    async def test_report_after_apply(self, engine, run_store, lifecycle, clock, report_cache):
        cutover = clock.now
        run_store.runs = [make_run(i, started_at=cutover - timedelta(hours=5 - i), duration=900.0) for i in range(5)]
        run_store.runs += [make_run(10 + i, started_at=cutover + timedelta(hours=i), duration=600.0) for i in range(5)]
        saved = await lifecycle.propose(make_candidate())
        await engine.apply(saved.optimization_id)
        await lifecycle.drain_signals()

        report = await engine.get_impact_report("PIPE-1")

        assert report.cutover == cutover
        assert report.time_saved_minutes == 5.0
        assert report.success_rate_delta == 0.0
        assert report_cache["PIPE-1"] is report

    async def test_store_outage_serves_cached_report_as_stale(self, engine, run_store, report_cache):
        run_store.runs = [make_run(i) for i in range(3)]
        fresh = await engine.get_impact_report("PIPE-1")
        run_store.fail = True

        cached = await engine.get_impact_report("PIPE-1")

        assert cached.stale
        assert cached == replace(fresh, stale=True)

    async def test_store_outage_without_cache_raises(self, engine, run_store):
        run_store.fail = True
        with pytest.raises(StoreUnavailable):
            await engine.get_impact_report("PIPE-1")
