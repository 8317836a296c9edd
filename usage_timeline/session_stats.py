"""Per-session statistics derived from projected sub-events."""

from __future__ import annotations

from typing import Iterable

from usage_timeline.models import (
    PauseResumeStats,
    SessionStats,
    SessionStatus,
    SessionSubEvent,
    SessionSubEventType,
    SessionWithEvents,
)
from usage_timeline.session_parts import calculate_duration_ms


def build_session_stats(
    sessions_with_events: Iterable[SessionWithEvents],
    foreground_package: str | None,
    now_ms: int,
) -> list[SessionStats]:
    """Build one SessionStats per session that has sub-events.

    Args:
        sessions_with_events: Projected sessions.
        foreground_package: Current foreground package, used to tell a
            running session from one in its grace period. Pass None when
            that distinction does not matter.
        now_ms: Clamp for unfinished sessions' duration.

    Returns:
        Stats ordered by most recent sub-event first.
    """
    with_events = [swe for swe in sessions_with_events if swe.events]
    with_events.sort(key=lambda swe: max(e.timestamp_ms for e in swe.events), reverse=True)

    result: list[SessionStats] = []
    for swe in with_events:
        events = swe.events
        started_at = next(
            (e.timestamp_ms for e in events if e.type == SessionSubEventType.START),
            events[0].timestamp_ms,
        )
        ended_at = next(
            (e.timestamp_ms for e in reversed(events) if e.type == SessionSubEventType.END),
            None,
        )
        if ended_at is not None:
            status = SessionStatus.FINISHED
        elif swe.session.package_id == foreground_package:
            status = SessionStatus.RUNNING
        else:
            status = SessionStatus.GRACE

        result.append(
            SessionStats(
                id=swe.session.id,
                package_id=swe.session.package_id,
                started_at_ms=started_at,
                ended_at_ms=ended_at,
                duration_ms=calculate_duration_ms(events, now_ms),
                status=status,
                pause_resume_events=_pause_resume_pairs(events),
            )
        )
    return result


def _pause_resume_pairs(events: list[SessionSubEvent]) -> list[PauseResumeStats]:
    """Pair each Pause with the following Resume; a trailing Pause stays unresumed."""
    result: list[PauseResumeStats] = []
    paused_at: int | None = None
    for event in sorted(events, key=lambda e: e.timestamp_ms):
        if event.type == SessionSubEventType.PAUSE:
            paused_at = event.timestamp_ms
        elif event.type == SessionSubEventType.RESUME and paused_at is not None:
            result.append(PauseResumeStats(paused_at_ms=paused_at, resumed_at_ms=event.timestamp_ms))
            paused_at = None
    if paused_at is not None:
        result.append(PauseResumeStats(paused_at_ms=paused_at))
    return result
