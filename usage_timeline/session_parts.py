"""Active time segments and their per-day slices."""

from __future__ import annotations

import logging
from datetime import tzinfo
from typing import Iterable, NamedTuple

from usage_timeline.models import SessionPart, SessionSubEvent, SessionSubEventType, SessionWithEvents
from usage_timeline.timeutil import MINUTES_PER_DAY, day_bounds_ms, local_date_of, minute_of_day

logger = logging.getLogger(__name__)


class ActiveSegment(NamedTuple):
    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


def build_active_segments(events: list[SessionSubEvent], now_ms: int) -> list[ActiveSegment]:
    """Pair each Start/Resume with the next Pause/End.

    End is a hard stop. A segment still open after the last sub-event is
    closed at ``now_ms``. Zero-length segments are dropped.
    """
    result: list[ActiveSegment] = []
    segment_start: int | None = None

    def close(end_ms: int) -> None:
        nonlocal segment_start
        if segment_start is not None and end_ms > segment_start:
            result.append(ActiveSegment(segment_start, end_ms))
        segment_start = None

    for event in sorted(events, key=lambda e: e.timestamp_ms):
        if event.type in (SessionSubEventType.START, SessionSubEventType.RESUME):
            if segment_start is None:
                segment_start = event.timestamp_ms
        elif event.type == SessionSubEventType.PAUSE:
            close(event.timestamp_ms)
        elif event.type == SessionSubEventType.END:
            close(event.timestamp_ms)
            return result
        # Suggestion markers do not affect active time

    if segment_start is not None:
        close(now_ms)
    return result


def calculate_duration_ms(events: list[SessionSubEvent], now_ms: int) -> int:
    return sum(segment.duration_ms for segment in build_active_segments(events, now_ms))


def split_segment(
    segment: ActiveSegment,
    zone: tzinfo,
    *,
    session_id: int,
    package_id: str,
) -> list[SessionPart]:
    """Cut a segment at each local midnight so no part crosses a day boundary."""
    parts: list[SessionPart] = []
    current = segment.start_ms
    while current < segment.end_ms:
        day = local_date_of(current, zone)
        _, day_end = day_bounds_ms(day, zone)
        slice_end = min(segment.end_ms, day_end)
        end_minutes = MINUTES_PER_DAY if slice_end == day_end else minute_of_day(slice_end, zone)
        parts.append(
            SessionPart(
                session_id=session_id,
                package_id=package_id,
                date=day,
                start_ms=current,
                end_ms=slice_end,
                start_minutes_of_day=minute_of_day(current, zone),
                end_minutes_of_day=end_minutes,
                duration_ms=slice_end - current,
            )
        )
        current = slice_end
    return parts


def generate_session_parts(
    sessions_with_events: Iterable[SessionWithEvents],
    zone: tzinfo,
    now_ms: int,
) -> list[SessionPart]:
    """Slice every session's active time into per-local-day parts.

    Unfinished sessions are included, with their open segment ending at
    ``now_ms``.
    """
    parts: list[SessionPart] = []
    for swe in sessions_with_events:
        if not swe.events:
            continue
        for segment in build_active_segments(swe.events, now_ms):
            parts.extend(
                split_segment(
                    segment,
                    zone,
                    session_id=swe.session.id,
                    package_id=swe.session.package_id,
                )
            )
    logger.debug("Generated %d session parts", len(parts))
    return parts
