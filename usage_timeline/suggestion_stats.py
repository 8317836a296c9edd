"""Suggestion funnel: how users answered prompts and whether they stopped soon after."""

from __future__ import annotations

from collections import Counter
from datetime import date, tzinfo
from typing import Iterable, Mapping

from usage_timeline.events import SuggestionDecision
from usage_timeline.models import (
    DECISION_SUB_EVENT_TYPES,
    Session,
    SessionSubEvent,
    SessionSubEventType,
    SuggestionDailyStats,
    SuggestionInstance,
)
from usage_timeline.timeutil import local_date_of

DEFAULT_END_SOON_THRESHOLD_MS = 2 * 60_000


def _instances_for_session(
    session: Session,
    events: list[SessionSubEvent],
    target_date: date,
    zone: tzinfo,
    end_soon_threshold_ms: int,
) -> list[SuggestionInstance]:
    instances: list[SuggestionInstance] = []
    for index, event in enumerate(events):
        if event.type != SessionSubEventType.SUGGESTION_SHOWN:
            continue
        if local_date_of(event.timestamp_ms, zone) != target_date:
            continue

        following = events[index + 1 :]

        # A prompt's answer must come before the next prompt is shown
        decision_event: SessionSubEvent | None = None
        for candidate in following:
            if candidate.type == SessionSubEventType.SUGGESTION_SHOWN:
                break
            if candidate.type in DECISION_SUB_EVENT_TYPES:
                decision_event = candidate
                break

        end_event = next((e for e in following if e.type == SessionSubEventType.END), None)

        time_to_end: int | None = None
        ended_soon: bool | None = None
        if end_event is not None:
            time_to_end = max(end_event.timestamp_ms - event.timestamp_ms, 0)
            ended_soon = time_to_end <= end_soon_threshold_ms

        instances.append(
            SuggestionInstance(
                suggestion_id=event.suggestion_id,
                session_id=session.id,
                package_id=session.package_id,
                shown_at_ms=event.timestamp_ms,
                decision=DECISION_SUB_EVENT_TYPES[decision_event.type] if decision_event else None,
                decision_at_ms=decision_event.timestamp_ms if decision_event else None,
                end_at_ms=end_event.timestamp_ms if end_event else None,
                time_to_end_ms=time_to_end,
                ended_soon=ended_soon,
            )
        )
    return instances


def build_suggestion_daily_stats(
    sessions: Iterable[Session],
    events_by_session_id: Mapping[int, list[SessionSubEvent]],
    target_date: date,
    zone: tzinfo,
    end_soon_threshold_ms: int = DEFAULT_END_SOON_THRESHOLD_MS,
) -> SuggestionDailyStats | None:
    """Classify every prompt shown on ``target_date``.

    A prompt "ended soon" when its session's End came within
    ``end_soon_threshold_ms`` of the prompt. Without an End the outcome is
    unknown.

    Returns:
        The day's funnel, or None if no prompt was shown that day.
    """
    instances: list[SuggestionInstance] = []
    for session in sessions:
        events = events_by_session_id.get(session.id)
        if not events:
            continue
        ordered = sorted(events, key=lambda e: e.timestamp_ms)
        instances.extend(
            _instances_for_session(session, ordered, target_date, zone, end_soon_threshold_ms)
        )

    if not instances:
        return None

    decisions = Counter(inst.decision for inst in instances if inst.decision is not None)
    ended_soon_by_decision: Counter[SuggestionDecision] = Counter(
        inst.decision
        for inst in instances
        if inst.ended_soon is True and inst.decision is not None
    )

    return SuggestionDailyStats(
        date=target_date,
        total_shown=len(instances),
        snoozed_count=decisions[SuggestionDecision.SNOOZED],
        dismissed_count=decisions[SuggestionDecision.DISMISSED],
        disabled_for_session_count=decisions[SuggestionDecision.DISABLED_FOR_SESSION],
        ended_soon_count=sum(1 for inst in instances if inst.ended_soon is True),
        continued_count=sum(1 for inst in instances if inst.ended_soon is False),
        no_end_yet_count=sum(1 for inst in instances if inst.end_at_ms is None),
        ended_soon_by_decision=dict(ended_soon_by_decision),
        instances=instances,
    )
