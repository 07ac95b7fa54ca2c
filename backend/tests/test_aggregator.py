"""Tests for the metrics aggregator."""

from datetime import date, datetime, timedelta, timezone

from pipeline_analytics.analytics.aggregator import (
    aggregate_runs,
    failure_key,
    success_rate,
    weekday_index,
)
from tests.fakes import BASE_TIME, make_run


# ── Totals and rates ─────────────────────────────────────────────────────────

class TestTotals:
    def test_seven_of_ten_successful_runs(self):
        runs = [make_run(i, status="success") for i in range(7)]
        runs += [make_run(i, status="failed", error_message="boom") for i in range(7, 10)]

        stats = aggregate_runs(runs)

        assert stats.total == 10
        assert stats.success_count == 7
        assert stats.failure_count == 3
        assert stats.success_rate == 70.0
        assert stats.avg_duration_seconds == 600.0

    def test_empty_history(self):
        stats = aggregate_runs([])

        assert stats.total == 0
        assert stats.success_rate == 0.0
        assert stats.avg_duration_seconds is None
        assert len(stats.daily) == 30
        assert len(stats.weekdays) == 7
        assert stats.failure_reasons == {}

    def test_success_rate_bounds(self):
        assert success_rate(0, 0) == 0.0
        assert success_rate(5, 5) == 100.0
        assert 0.0 <= success_rate(3, 7) <= 100.0

    def test_status_counts_cover_every_status(self):
        runs = [make_run(0), make_run(1, status="cancelled"), make_run(2, status="running", duration=None)]
        stats = aggregate_runs(runs)
        assert stats.status_counts == {
            "pending": 0, "running": 1, "success": 1, "failed": 0, "cancelled": 1,
        }

    def test_null_durations_do_not_move_the_average(self):
        runs = [make_run(0, duration=300.0), make_run(1, duration=900.0)]
        with_nulls = runs + [make_run(2, status="running", duration=None), make_run(3, duration=None)]

        assert aggregate_runs(runs).avg_duration_seconds == 600.0
        assert aggregate_runs(with_nulls).avg_duration_seconds == 600.0

    def test_window_keeps_most_recent_runs(self):
        old_failures = [make_run(i, status="failed") for i in range(5)]
        recent_successes = [make_run(i, status="success") for i in range(5, 10)]

        stats = aggregate_runs(recent_successes + old_failures, window=5)

        assert stats.total == 5
        assert stats.success_rate == 100.0
        assert stats.window == 5


# ── Series ───────────────────────────────────────────────────────────────────

class TestSeries:
    def test_daily_series_ends_on_latest_run_day(self):
        runs = [make_run(0, started_at=BASE_TIME), make_run(1, started_at=BASE_TIME + timedelta(days=3))]
        stats = aggregate_runs(runs)

        assert len(stats.daily) == 30
        assert stats.daily[-1].day == date(2024, 1, 10)
        assert stats.daily[-1].total == 1
        assert stats.daily[-4].day == date(2024, 1, 7)
        assert stats.daily[-4].total == 1
        assert stats.daily[-2].total == 0
        assert stats.daily[-2].success_rate == 0.0
        assert stats.daily[-2].avg_duration_seconds is None

    def test_daily_series_honours_as_of(self):
        stats = aggregate_runs([make_run(0)], as_of=date(2024, 2, 1), days=7)
        assert [p.day for p in stats.daily][-1] == date(2024, 2, 1)
        assert len(stats.daily) == 7
        assert sum(p.total for p in stats.daily) == 0

    def test_weekdays_are_sunday_first(self):
        sunday = datetime(2024, 1, 7, 10, 0, tzinfo=timezone.utc)
        saturday = datetime(2024, 1, 13, 10, 0, tzinfo=timezone.utc)
        assert weekday_index(sunday) == 0
        assert weekday_index(saturday) == 6

        stats = aggregate_runs([
            make_run(0, started_at=sunday),
            make_run(1, started_at=sunday + timedelta(weeks=1), status="failed"),
            make_run(2, started_at=saturday),
        ])
        assert [p.label for p in stats.weekdays] == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
        assert stats.weekdays[0].total == 2
        assert stats.weekdays[0].success_rate == 50.0
        assert stats.weekdays[6].total == 1

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2024, 1, 7, 23, 30)
        stats = aggregate_runs([make_run(0, started_at=naive)])
        assert stats.daily[-1].day == date(2024, 1, 7)


# ── Failure reasons ──────────────────────────────────────────────────────────

class TestFailureReasons:
    def test_messages_share_a_bucket_after_fifty_characters(self):
        prefix = "x" * 50
        runs = [
            make_run(0, status="failed", error_message=prefix + " first tail"),
            make_run(1, status="failed", error_message=prefix + " second tail"),
        ]
        stats = aggregate_runs(runs)
        assert stats.failure_reasons == {prefix: 2}

    def test_missing_message_is_unknown_error(self):
        assert failure_key(None) == "Unknown error"
        assert failure_key("") == "Unknown error"

    def test_successful_runs_have_no_reason(self):
        stats = aggregate_runs([make_run(0, error_message="ignored")])
        assert stats.failure_reasons == {}

    def test_top_failures_sorted_by_count_then_reason(self):
        messages = ["b"] * 3 + ["a"] * 3 + ["c"] * 2 + ["d", "e", "f"]
        runs = [make_run(i, status="failed", error_message=m) for i, m in enumerate(messages)]
        top = aggregate_runs(runs).top_failures

        assert [(b.reason, b.count) for b in top] == [("a", 3), ("b", 3), ("c", 2), ("d", 1), ("e", 1)]
