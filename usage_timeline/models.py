"""Derived value objects.

All of these are rebuilt from the event log on every projection call and are
never persisted.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict

from usage_timeline.events import SuggestionDecision


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SessionSubEventType(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    END = "end"
    SUGGESTION_SHOWN = "suggestion_shown"
    SUGGESTION_SNOOZED = "suggestion_snoozed"
    SUGGESTION_DISMISSED = "suggestion_dismissed"
    SUGGESTION_DISABLED_FOR_SESSION = "suggestion_disabled_for_session"


# Sub-event types that carry a user's answer to a suggestion prompt.
DECISION_SUB_EVENT_TYPES: dict[SessionSubEventType, SuggestionDecision] = {
    SessionSubEventType.SUGGESTION_SNOOZED: SuggestionDecision.SNOOZED,
    SessionSubEventType.SUGGESTION_DISMISSED: SuggestionDecision.DISMISSED,
    SessionSubEventType.SUGGESTION_DISABLED_FOR_SESSION: SuggestionDecision.DISABLED_FOR_SESSION,
}


class Session(_Frozen):
    """One logical, possibly paused, period of use of a target app.

    ``id`` is assigned during projection and is only meaningful within the
    result of a single projection call.
    """

    id: int
    package_id: str


class SessionSubEvent(_Frozen):
    session_id: int
    type: SessionSubEventType
    timestamp_ms: int
    suggestion_id: int | None = None


class SessionWithEvents(_Frozen):
    session: Session
    events: list[SessionSubEvent]

    @property
    def is_finished(self) -> bool:
        return any(e.type == SessionSubEventType.END for e in self.events)


class SessionPart(_Frozen):
    """The slice of a session's active time that falls on one local day."""

    session_id: int
    package_id: str
    date: dt.date
    start_ms: int
    end_ms: int
    start_minutes_of_day: int
    end_minutes_of_day: int
    duration_ms: int


class MonitoringPeriod(_Frozen):
    """Half-open interval ``[start_ms, end_ms)`` during which activity was observable."""

    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class SessionStatus(str, Enum):
    RUNNING = "running"
    GRACE = "grace"
    FINISHED = "finished"


class PauseResumeStats(_Frozen):
    paused_at_ms: int
    resumed_at_ms: int | None = None


class SessionStats(_Frozen):
    id: int
    package_id: str
    started_at_ms: int
    ended_at_ms: int | None
    duration_ms: int
    status: SessionStatus
    pause_resume_events: list[PauseResumeStats]


class AppUsageStats(_Frozen):
    package_id: str
    total_usage_ms: int
    average_session_duration_ms: int
    session_count: int


class TimeBucketStats(_Frozen):
    start_minutes_of_day: int
    end_minutes_of_day: int
    monitoring_minutes: int
    target_usage_minutes: int
    total_usage_ms: int
    top_package_id: str | None


class SuggestionInstance(_Frozen):
    suggestion_id: int | None
    session_id: int
    package_id: str
    shown_at_ms: int
    decision: SuggestionDecision | None
    decision_at_ms: int | None
    end_at_ms: int | None
    time_to_end_ms: int | None
    ended_soon: bool | None


class SuggestionDailyStats(_Frozen):
    date: dt.date
    total_shown: int
    snoozed_count: int
    dismissed_count: int
    disabled_for_session_count: int
    ended_soon_count: int
    continued_count: int
    no_end_yet_count: int
    ended_soon_by_decision: dict[SuggestionDecision, int] = {}
    instances: list[SuggestionInstance] = []

    @property
    def skipped_count(self) -> int:
        """Snoozed and dismissed prompts, shown as one category."""
        return self.snoozed_count + self.dismissed_count


class DailyStats(_Frozen):
    date: dt.date
    monitoring_total_minutes: int
    monitoring_with_target_minutes: int
    session_count: int
    average_session_duration_ms: int
    longest_session_duration_ms: int
    long_session_count: int
    very_long_session_count: int
    total_usage_ms: int
    app_usage_stats: list[AppUsageStats] = []
    time_buckets: list[TimeBucketStats] = []
    suggestion_stats: SuggestionDailyStats | None = None
