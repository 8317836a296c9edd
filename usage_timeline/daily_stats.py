"""Daily rollup of sessions, session parts and monitoring periods."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, tzinfo
from typing import Iterable, Mapping

from usage_timeline.models import (
    AppUsageStats,
    DailyStats,
    MonitoringPeriod,
    Session,
    SessionPart,
    SessionStats,
    SessionSubEvent,
    TimeBucketStats,
)
from usage_timeline.monitoring import (
    sum_monitoring_minutes_for_day,
    sum_monitoring_with_target_minutes,
)
from usage_timeline.suggestion_stats import (
    DEFAULT_END_SOON_THRESHOLD_MS,
    build_suggestion_daily_stats,
)
from usage_timeline.timeutil import MINUTES_PER_DAY, MS_PER_MINUTE, day_bounds_ms, local_date_of

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_SIZE_MINUTES = 30
LONG_SESSION_THRESHOLD_MS = 30 * MS_PER_MINUTE
VERY_LONG_SESSION_THRESHOLD_MS = 60 * MS_PER_MINUTE


def _average(values: list[int]) -> int:
    if not values:
        return 0
    return sum(values) // len(values)


def _overlap_ms(start_a: int, end_a: int, start_b: int, end_b: int) -> int:
    return max(0, min(end_a, end_b) - max(start_a, start_b))


def build_time_buckets(
    parts_on_date: Iterable[SessionPart],
    periods_on_date: Iterable[MonitoringPeriod],
    bucket_size_minutes: int,
    day_start_ms: int,
    day_end_ms: int,
) -> list[TimeBucketStats]:
    """Split the day into fixed-width buckets and accumulate usage and monitoring.

    Intersections are measured in milliseconds and floored to whole minutes
    per bucket, so a day's bucket minutes never exceed its floored total.
    The top package of a bucket is the one with the most usage in it; ties go
    to the package seen first.

    Raises:
        ValueError: If ``bucket_size_minutes`` is not positive.
    """
    if bucket_size_minutes <= 0:
        raise ValueError(f"bucket_size_minutes must be positive, got {bucket_size_minutes}")

    edges: list[tuple[int, int]] = []
    minutes = 0
    while minutes < MINUTES_PER_DAY:
        end = min(minutes + bucket_size_minutes, MINUTES_PER_DAY)
        edges.append((minutes, end))
        minutes = end

    bucket_ms = bucket_size_minutes * MS_PER_MINUTE
    usage: list[dict[str, int]] = [{} for _ in edges]
    monitoring: list[int] = [0] * len(edges)

    def bucket_range(start_ms: int, end_ms: int) -> range:
        first = max((start_ms - day_start_ms) // bucket_ms, 0)
        last = min((end_ms - 1 - day_start_ms) // bucket_ms, len(edges) - 1)
        return range(first, last + 1)

    def bucket_bounds(index: int) -> tuple[int, int]:
        start_min, end_min = edges[index]
        return (
            day_start_ms + start_min * MS_PER_MINUTE,
            min(day_start_ms + end_min * MS_PER_MINUTE, day_end_ms),
        )

    for period in periods_on_date:
        start = max(period.start_ms, day_start_ms)
        end = min(period.end_ms, day_end_ms)
        if end <= start:
            continue
        for index in bucket_range(start, end):
            monitoring[index] += _overlap_ms(start, end, *bucket_bounds(index))

    for part in parts_on_date:
        start = max(part.start_ms, day_start_ms)
        end = min(part.end_ms, day_end_ms)
        if end <= start:
            continue
        for index in bucket_range(start, end):
            overlap = _overlap_ms(start, end, *bucket_bounds(index))
            if overlap > 0:
                by_package = usage[index]
                by_package[part.package_id] = by_package.get(part.package_id, 0) + overlap

    buckets: list[TimeBucketStats] = []
    for (start_min, end_min), by_package, monitoring_ms in zip(edges, usage, monitoring):
        total_usage = sum(by_package.values())
        top_package = max(by_package.items(), key=lambda item: item[1])[0] if by_package else None
        buckets.append(
            TimeBucketStats(
                start_minutes_of_day=start_min,
                end_minutes_of_day=end_min,
                monitoring_minutes=monitoring_ms // MS_PER_MINUTE,
                target_usage_minutes=total_usage // MS_PER_MINUTE,
                total_usage_ms=total_usage,
                top_package_id=top_package,
            )
        )
    return buckets


def _build_app_usage_stats(
    sessions_on_date: list[Session],
    stats_by_id: Mapping[int, SessionStats],
    parts_on_date: list[SessionPart],
) -> list[AppUsageStats]:
    usage_by_package: defaultdict[str, int] = defaultdict(int)
    for part in parts_on_date:
        usage_by_package[part.package_id] += part.duration_ms

    durations_by_package: defaultdict[str, list[int]] = defaultdict(list)
    for session in sessions_on_date:
        stats = stats_by_id.get(session.id)
        if stats is not None:
            durations_by_package[session.package_id].append(stats.duration_ms)

    result = [
        AppUsageStats(
            package_id=package_id,
            total_usage_ms=total,
            average_session_duration_ms=_average(durations_by_package[package_id]),
            session_count=len(durations_by_package[package_id]),
        )
        for package_id, total in usage_by_package.items()
    ]
    result.sort(key=lambda app: app.total_usage_ms, reverse=True)
    return result


def calculate_daily_stats(
    sessions: Iterable[Session],
    session_stats: Iterable[SessionStats],
    session_parts: Iterable[SessionPart],
    events_by_session_id: Mapping[int, list[SessionSubEvent]],
    monitoring_periods: Iterable[MonitoringPeriod],
    target_date: date,
    zone: tzinfo,
    now_ms: int,
    bucket_size_minutes: int = DEFAULT_BUCKET_SIZE_MINUTES,
    end_soon_threshold_ms: int = DEFAULT_END_SOON_THRESHOLD_MS,
) -> DailyStats:
    """Compute the DailyStats of ``target_date``.

    Args:
        sessions: All projected sessions, finished or not.
        session_stats: Stats from ``build_session_stats``.
        session_parts: Parts from ``generate_session_parts``.
        events_by_session_id: Session id to its sub-events.
        monitoring_periods: Periods from ``build_monitoring_periods_for_date``.
        target_date: Local date to aggregate.
        zone: Zone defining local dates.
        now_ms: End used for sessions that have not ended.
        bucket_size_minutes: Width of the timeline buckets.
        end_soon_threshold_ms: Threshold of the suggestion funnel.
    """
    stats_by_id = {stats.id: stats for stats in session_stats}
    day_start, day_end = day_bounds_ms(target_date, zone)

    # Sessions whose [start, end or now] range touches the target date
    sessions_on_date: list[Session] = []
    for session in sessions:
        stats = stats_by_id.get(session.id)
        if stats is None:
            continue
        start_date = local_date_of(stats.started_at_ms, zone)
        end_ms = stats.ended_at_ms if stats.ended_at_ms is not None else now_ms
        end_date = local_date_of(end_ms, zone)
        if start_date <= target_date <= end_date:
            sessions_on_date.append(session)

    durations = [stats_by_id[s.id].duration_ms for s in sessions_on_date]

    parts_on_date = [part for part in session_parts if part.date == target_date]
    periods_on_date = [
        period
        for period in monitoring_periods
        if period.end_ms > day_start and period.start_ms < day_end
    ]

    daily = DailyStats(
        date=target_date,
        monitoring_total_minutes=sum_monitoring_minutes_for_day(
            periods_on_date, day_start, day_end, now_ms
        ),
        monitoring_with_target_minutes=sum_monitoring_with_target_minutes(
            parts_on_date, periods_on_date, day_start, day_end, now_ms
        ),
        session_count=len(durations),
        average_session_duration_ms=_average(durations),
        longest_session_duration_ms=max(durations, default=0),
        long_session_count=sum(1 for d in durations if d >= LONG_SESSION_THRESHOLD_MS),
        very_long_session_count=sum(1 for d in durations if d >= VERY_LONG_SESSION_THRESHOLD_MS),
        total_usage_ms=sum(part.duration_ms for part in parts_on_date),
        app_usage_stats=_build_app_usage_stats(sessions_on_date, stats_by_id, parts_on_date),
        time_buckets=build_time_buckets(
            parts_on_date, periods_on_date, bucket_size_minutes, day_start, day_end
        ),
        suggestion_stats=build_suggestion_daily_stats(
            sessions_on_date,
            events_by_session_id,
            target_date,
            zone,
            end_soon_threshold_ms,
        ),
    )
    logger.debug(
        "Daily stats for %s: %d sessions, %dms usage",
        target_date,
        daily.session_count,
        daily.total_usage_ms,
    )
    return daily
