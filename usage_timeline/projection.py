"""Single entry point from timeline events to sessions, parts and daily stats.

Overlay, history and statistics consumers all go through here so that they
share one interpretation of what a session is.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Iterable

from usage_timeline.daily_stats import (
    DEFAULT_BUCKET_SIZE_MINUTES,
    calculate_daily_stats,
)
from usage_timeline.events import TimelineEvent
from usage_timeline.models import (
    DailyStats,
    Session,
    SessionPart,
    SessionSubEvent,
    SessionWithEvents,
)
from usage_timeline.monitoring import build_monitoring_periods_for_date
from usage_timeline.session_parts import generate_session_parts
from usage_timeline.session_projector import project_sessions
from usage_timeline.session_stats import build_session_stats
from usage_timeline.suggestion_stats import DEFAULT_END_SOON_THRESHOLD_MS

__all__ = [
    "InterpretationConfig",
    "TimelineProjection",
    "build_daily_stats_for_date",
    "build_monitoring_periods_for_date",
    "calculate_daily_stats",
    "generate_session_parts",
    "project_sessions",
    "project_timeline",
]

DEFAULT_GRACE_MS = 30_000


@dataclass(frozen=True, slots=True)
class InterpretationConfig:
    """Parameters used to reinterpret the event log.

    Settings are passed explicitly on every call, so changing one and
    projecting again reinterprets the past as well.
    """

    grace_ms: int = DEFAULT_GRACE_MS
    bucket_size_minutes: int = DEFAULT_BUCKET_SIZE_MINUTES
    end_soon_threshold_ms: int = DEFAULT_END_SOON_THRESHOLD_MS


@dataclass(frozen=True, slots=True)
class TimelineProjection:
    sessions_with_events: list[SessionWithEvents]
    session_parts: list[SessionPart]

    @property
    def sessions(self) -> list[Session]:
        return [swe.session for swe in self.sessions_with_events]

    @property
    def events_by_session_id(self) -> dict[int, list[SessionSubEvent]]:
        return {swe.session.id: swe.events for swe in self.sessions_with_events}


def project_timeline(
    events: list[TimelineEvent],
    target_packages: Iterable[str],
    config: InterpretationConfig,
    now_ms: int,
    zone: tzinfo,
) -> TimelineProjection:
    """Project sessions and their per-day parts in one pass."""
    sessions_with_events = project_sessions(
        events,
        target_packages=target_packages,
        grace_ms=config.grace_ms,
        now_ms=now_ms,
    )
    return TimelineProjection(
        sessions_with_events=sessions_with_events,
        session_parts=generate_session_parts(sessions_with_events, zone, now_ms),
    )


def build_daily_stats_for_date(
    day: date,
    zone: tzinfo,
    events: list[TimelineEvent],
    target_packages: Iterable[str],
    config: InterpretationConfig,
    now_ms: int,
) -> DailyStats | None:
    """Run the whole pipeline for one local day.

    Args:
        day: Local date to report on.
        zone: Zone defining local dates.
        events: Seed events before the day plus the day's events.
        target_packages: Target set in effect before the first target change.
        config: Current interpretation settings.
        now_ms: Evaluation time. Open sessions and periods end here.

    Returns:
        The day's stats, or None when there were no events, no target usage
        and no monitoring at all, so callers can tell "nothing happened"
        from "measured zero".
    """
    if not events:
        return None

    projection = project_timeline(events, target_packages, config, now_ms, zone)
    periods = build_monitoring_periods_for_date(day, zone, events, now_ms)

    parts_on_day = [part for part in projection.session_parts if part.date == day]
    if not parts_on_day and not periods:
        return None

    session_stats = build_session_stats(
        projection.sessions_with_events,
        foreground_package=None,
        now_ms=now_ms,
    )
    return calculate_daily_stats(
        sessions=projection.sessions,
        session_stats=session_stats,
        session_parts=projection.session_parts,
        events_by_session_id=projection.events_by_session_id,
        monitoring_periods=periods,
        target_date=day,
        zone=zone,
        now_ms=now_ms,
        bucket_size_minutes=config.bucket_size_minutes,
        end_soon_threshold_ms=config.end_soon_threshold_ms,
    )
