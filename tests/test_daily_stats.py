"""Tests for the daily statistics rollup."""

from datetime import date
from zoneinfo import ZoneInfo

import pytest

from usage_timeline.daily_stats import build_time_buckets, calculate_daily_stats
from usage_timeline.events import (
    ForegroundAppEvent,
    ScreenEvent,
    ScreenState,
    ServiceLifecycleEvent,
    ServiceState,
)
from usage_timeline.models import MonitoringPeriod, SessionPart
from usage_timeline.projection import (
    InterpretationConfig,
    build_daily_stats_for_date,
    project_timeline,
)
from usage_timeline.session_stats import build_session_stats
from usage_timeline.timeutil import day_bounds_ms

UTC = ZoneInfo("UTC")
DAY = date(2025, 1, 15)
DAY_START, DAY_END = day_bounds_ms(DAY, UTC)
MINUTE = 60_000
HOUR = 60 * MINUTE
VIDEO = "com.example.video"
SNS = "com.example.sns"
TARGETS = {VIDEO, SNS}


def fg(offset: int, package_id: str | None = None) -> ForegroundAppEvent:
    return ForegroundAppEvent(timestamp_ms=DAY_START + offset, package_id=package_id)


def monitored_day_events() -> list:
    """Monitoring on all day; 30 minutes of video and 5 of sns."""
    return [
        ServiceLifecycleEvent(timestamp_ms=DAY_START - HOUR, state=ServiceState.STARTED),
        ScreenEvent(timestamp_ms=DAY_START - HOUR, state=ScreenState.ON),
        fg(10 * MINUTE, VIDEO),
        fg(40 * MINUTE),
        fg(45 * MINUTE, SNS),
        fg(50 * MINUTE),
    ]


def make_part(start: int, end: int, package_id: str, session_id: int = 1) -> SessionPart:
    return SessionPart(
        session_id=session_id,
        package_id=package_id,
        date=DAY,
        start_ms=DAY_START + start,
        end_ms=DAY_START + end,
        start_minutes_of_day=start // MINUTE,
        end_minutes_of_day=end // MINUTE,
        duration_ms=end - start,
    )


class TestBuildDailyStatsForDate:
    """End-to-end tests from events to DailyStats."""

    def test_totals(self):
        daily = build_daily_stats_for_date(
            DAY, UTC, monitored_day_events(), TARGETS, InterpretationConfig(), now_ms=DAY_END + HOUR
        )

        assert daily is not None
        assert daily.session_count == 2
        assert daily.total_usage_ms == 35 * MINUTE
        assert daily.longest_session_duration_ms == 30 * MINUTE
        assert daily.average_session_duration_ms == (35 * MINUTE) // 2
        assert daily.long_session_count == 1
        assert daily.very_long_session_count == 0
        assert daily.monitoring_total_minutes == 24 * 60
        assert daily.monitoring_with_target_minutes == 35
        assert daily.suggestion_stats is None

    def test_app_usage_sorted_by_total(self):
        daily = build_daily_stats_for_date(
            DAY, UTC, monitored_day_events(), TARGETS, InterpretationConfig(), now_ms=DAY_END + HOUR
        )

        assert [(a.package_id, a.total_usage_ms, a.session_count) for a in daily.app_usage_stats] == [
            (VIDEO, 30 * MINUTE, 1),
            (SNS, 5 * MINUTE, 1),
        ]

    def test_time_buckets(self):
        daily = build_daily_stats_for_date(
            DAY, UTC, monitored_day_events(), TARGETS, InterpretationConfig(), now_ms=DAY_END + HOUR
        )

        assert len(daily.time_buckets) == 48
        first, second = daily.time_buckets[:2]
        assert (first.target_usage_minutes, first.top_package_id) == (20, VIDEO)
        assert (second.target_usage_minutes, second.top_package_id) == (15, VIDEO)
        assert first.monitoring_minutes == 30
        assert sum(b.target_usage_minutes for b in daily.time_buckets) == 35

    def test_bucket_size_from_config(self):
        daily = build_daily_stats_for_date(
            DAY,
            UTC,
            monitored_day_events(),
            TARGETS,
            InterpretationConfig(bucket_size_minutes=60),
            now_ms=DAY_END + HOUR,
        )
        assert len(daily.time_buckets) == 24
        assert daily.time_buckets[0].target_usage_minutes == 35

    def test_no_events_gives_none(self):
        assert build_daily_stats_for_date(DAY, UTC, [], TARGETS, InterpretationConfig(), DAY_END) is None

    def test_nothing_measured_gives_none(self):
        """Events that produce neither usage nor monitoring give None, not zeros."""
        events = [fg(MINUTE, "com.example.mail")]
        daily = build_daily_stats_for_date(DAY, UTC, events, TARGETS, InterpretationConfig(), DAY_END)
        assert daily is None

    def test_grace_reinterprets_history(self):
        """The same events give fewer sessions under a longer grace period."""
        events = monitored_day_events() + [fg(55 * MINUTE, VIDEO), fg(60 * MINUTE)]
        short = build_daily_stats_for_date(
            DAY, UTC, events, TARGETS, InterpretationConfig(grace_ms=MINUTE), DAY_END + HOUR
        )
        long = build_daily_stats_for_date(
            DAY, UTC, events, TARGETS, InterpretationConfig(grace_ms=HOUR), DAY_END + HOUR
        )
        assert short.session_count == 3
        assert long.session_count == 2
        assert short.total_usage_ms == long.total_usage_ms


class TestCalculateDailyStats:
    """Tests for calculate_daily_stats with explicit inputs."""

    def test_idempotent(self):
        events = monitored_day_events()
        now = DAY_END + HOUR
        projection = project_timeline(events, TARGETS, InterpretationConfig(), now, UTC)
        stats = build_session_stats(projection.sessions_with_events, None, now)
        periods = [MonitoringPeriod(start_ms=DAY_START, end_ms=DAY_END)]

        def run():
            return calculate_daily_stats(
                projection.sessions,
                stats,
                projection.session_parts,
                projection.events_by_session_id,
                periods,
                DAY,
                UTC,
                now,
            )

        assert run() == run()

    def test_empty_inputs_average_zero(self):
        daily = calculate_daily_stats([], [], [], {}, [], DAY, UTC, DAY_END)

        assert daily.session_count == 0
        assert daily.average_session_duration_ms == 0
        assert daily.longest_session_duration_ms == 0
        assert daily.total_usage_ms == 0
        assert daily.app_usage_stats == []
        assert all(b.top_package_id is None for b in daily.time_buckets)


class TestBuildTimeBuckets:
    """Tests for bucket accumulation."""

    def test_bucket_conservation(self):
        """Bucket minutes never exceed the floored total usage."""
        parts = [
            make_part(30_500, 29 * MINUTE + 59_000, VIDEO),
            make_part(29 * MINUTE + 59_500, 61 * MINUTE + 1, SNS, session_id=2),
            make_part(89 * MINUTE + 30_000, 90 * MINUTE + 30_000, VIDEO, session_id=3),
        ]
        buckets = build_time_buckets(parts, [], 30, DAY_START, DAY_END)

        total_ms = sum(p.duration_ms for p in parts)
        assert sum(b.target_usage_minutes for b in buckets) <= total_ms // MINUTE
        assert sum(b.total_usage_ms for b in buckets) == total_ms

    def test_top_package_tie_goes_to_first_seen(self):
        parts = [
            make_part(0, 5 * MINUTE, SNS),
            make_part(5 * MINUTE, 10 * MINUTE, VIDEO, session_id=2),
        ]
        buckets = build_time_buckets(parts, [], 30, DAY_START, DAY_END)
        assert buckets[0].top_package_id == SNS

    def test_uneven_bucket_size_ends_at_midnight(self):
        buckets = build_time_buckets([], [], 7, DAY_START, DAY_END)
        assert buckets[0].end_minutes_of_day == 7
        assert buckets[-1].end_minutes_of_day == 1440
        assert buckets[-1].start_minutes_of_day == 1435

    def test_monitoring_accumulated(self):
        periods = [MonitoringPeriod(start_ms=DAY_START + 20 * MINUTE, end_ms=DAY_START + 70 * MINUTE)]
        buckets = build_time_buckets([], periods, 30, DAY_START, DAY_END)
        assert [b.monitoring_minutes for b in buckets[:3]] == [10, 30, 10]

    def test_invalid_bucket_size(self):
        with pytest.raises(ValueError):
            build_time_buckets([], [], 0, DAY_START, DAY_END)
