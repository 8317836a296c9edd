"""Fold the timeline event log into logical sessions.

Sessions are never stored. Changing the grace period and projecting the same
events again is how past sessions get reinterpreted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from usage_timeline.events import (
    ForegroundAppEvent,
    PermissionEvent,
    PermissionKind,
    PermissionState,
    ScreenEvent,
    ScreenState,
    ServiceLifecycleEvent,
    ServiceState,
    SuggestionDecision,
    SuggestionDecisionEvent,
    SuggestionShownEvent,
    TargetAppsChangedEvent,
    TimelineEvent,
    sort_events,
)
from usage_timeline.models import (
    Session,
    SessionSubEvent,
    SessionSubEventType,
    SessionWithEvents,
)
from usage_timeline.monitoring import is_monitoring_enabled

logger = logging.getLogger(__name__)

_DECISION_TYPES = {
    SuggestionDecision.SNOOZED: SessionSubEventType.SUGGESTION_SNOOZED,
    SuggestionDecision.DISMISSED: SessionSubEventType.SUGGESTION_DISMISSED,
    SuggestionDecision.DISABLED_FOR_SESSION: SessionSubEventType.SUGGESTION_DISABLED_FOR_SESSION,
}


@dataclass
class _ActiveState:
    session_id: int
    events: list[SessionSubEvent] = field(default_factory=list)
    # When the app stopped being used (left foreground, screen off, ...).
    # None while the app is in use.
    last_inactive_at_ms: int | None = None


class _SessionProjection:
    """Mutable scan state for a single ``project_sessions`` call."""

    def __init__(self, target_packages: Iterable[str], grace_ms: int) -> None:
        self.grace_ms = grace_ms
        self.targets: frozenset[str] = frozenset(target_packages)
        self.current_foreground: str | None = None
        self.screen_on = True
        self.service_running = True
        self.monitoring_enabled = True
        self.permission_states: dict[PermissionKind, PermissionState] = {}
        self.active: dict[str, _ActiveState] = {}
        self.finished: list[SessionWithEvents] = []
        self._next_session_id = 1

    def is_target(self, package_id: str | None) -> bool:
        return package_id is not None and package_id in self.targets

    def _append(
        self,
        state: _ActiveState,
        event_type: SessionSubEventType,
        ts: int,
        suggestion_id: int | None = None,
    ) -> None:
        state.events.append(
            SessionSubEvent(
                session_id=state.session_id,
                type=event_type,
                timestamp_ms=ts,
                suggestion_id=suggestion_id,
            )
        )

    def start_session(self, package_id: str, ts: int) -> None:
        if package_id not in self.targets or package_id in self.active:
            return
        state = _ActiveState(session_id=self._next_session_id)
        self._next_session_id += 1
        self._append(state, SessionSubEventType.START, ts)
        self.active[package_id] = state

    def end_session(self, package_id: str, end_ms: int) -> None:
        state = self.active.pop(package_id, None)
        if state is None:
            return
        last = state.events[-1] if state.events else None
        if last is not None and last.type == SessionSubEventType.PAUSE and last.timestamp_ms == end_ms:
            # A Pause at the end instant becomes the End itself
            state.events.pop()
        self._append(state, SessionSubEventType.END, end_ms)
        self.finished.append(_to_session(package_id, state))

    def mark_inactive(self, package_id: str, ts: int) -> None:
        state = self.active.get(package_id)
        if state is None or state.last_inactive_at_ms is not None:
            return
        state.last_inactive_at_ms = ts
        self._append(state, SessionSubEventType.PAUSE, ts)

    def pause_all(self, ts: int) -> None:
        for package_id in list(self.active):
            self.mark_inactive(package_id, ts)

    def close_all(self, ts: int) -> None:
        for package_id in list(self.active):
            self.mark_inactive(package_id, ts)
            self.end_session(package_id, ts)

    def resume_current_foreground(self, ts: int) -> None:
        package_id = self.current_foreground
        if not self.is_target(package_id):
            return
        state = self.active.get(package_id)  # type: ignore[arg-type]
        if state is None or state.last_inactive_at_ms is None:
            return
        state.last_inactive_at_ms = None
        self._append(state, SessionSubEventType.RESUME, ts)

    def apply_grace_timeout(self, cutoff_ms: int) -> None:
        """End sessions inactive for at least the grace period.

        The End is stamped at the moment the app stopped being used, not at
        the cutoff; the grace period only decides whether a return reuses the
        session.
        """
        expired = [
            (package_id, state.last_inactive_at_ms)
            for package_id, state in self.active.items()
            if state.last_inactive_at_ms is not None
            and cutoff_ms - state.last_inactive_at_ms >= self.grace_ms
        ]
        for package_id, inactive_at in expired:
            self.end_session(package_id, inactive_at)  # type: ignore[arg-type]

    def recompute_monitoring(self, ts: int) -> None:
        enabled = is_monitoring_enabled(self.service_running, self.permission_states)
        if enabled == self.monitoring_enabled:
            return
        self.monitoring_enabled = enabled
        if not enabled:
            self.pause_all(ts)
            # The foreground may change while unobserved, so it is not trusted
            self.current_foreground = None

    def append_if_active(
        self,
        package_id: str | None,
        event_type: SessionSubEventType,
        ts: int,
        suggestion_id: int,
    ) -> None:
        if package_id is None:
            package_id = self.current_foreground
        if package_id is None:
            return
        state = self.active.get(package_id)
        if state is None:
            return
        self._append(state, event_type, ts, suggestion_id)

    def apply(self, event: TimelineEvent) -> None:
        ts = event.timestamp_ms

        if isinstance(event, ScreenEvent):
            self.screen_on = event.state == ScreenState.ON
            if not self.screen_on:
                self.pause_all(ts)
            elif self.monitoring_enabled:
                self.resume_current_foreground(ts)

        elif isinstance(event, ForegroundAppEvent):
            previous = self.current_foreground
            new_package = event.package_id
            if previous is not None and previous != new_package and self.is_target(previous):
                self.mark_inactive(previous, ts)

            self.current_foreground = new_package
            if self.screen_on and self.monitoring_enabled and self.is_target(new_package):
                if new_package in self.active:
                    self.resume_current_foreground(ts)
                else:
                    self.start_session(new_package, ts)  # type: ignore[arg-type]

        elif isinstance(event, PermissionEvent):
            self.permission_states[event.permission] = event.state
            self.recompute_monitoring(ts)

        elif isinstance(event, ServiceLifecycleEvent):
            self.service_running = event.state == ServiceState.STARTED
            if not self.service_running:
                self.close_all(ts)
            self.recompute_monitoring(ts)

        elif isinstance(event, TargetAppsChangedEvent):
            self.targets = event.target_packages
            for package_id in [p for p in self.active if p not in self.targets]:
                self.mark_inactive(package_id, ts)
                self.end_session(package_id, ts)

        elif isinstance(event, SuggestionShownEvent):
            self.append_if_active(
                event.package_id, SessionSubEventType.SUGGESTION_SHOWN, ts, event.suggestion_id
            )

        elif isinstance(event, SuggestionDecisionEvent):
            self.append_if_active(
                event.package_id, _DECISION_TYPES[event.decision], ts, event.suggestion_id
            )

        # Settings and service config changes never affect session boundaries.

    def result(self) -> list[SessionWithEvents]:
        ongoing = [_to_session(package_id, state) for package_id, state in self.active.items()]
        return sorted(self.finished + ongoing, key=lambda s: s.session.id)


def _to_session(package_id: str, state: _ActiveState) -> SessionWithEvents:
    return SessionWithEvents(
        session=Session(id=state.session_id, package_id=package_id),
        events=sorted(state.events, key=lambda e: e.timestamp_ms),
    )


def project_sessions(
    events: list[TimelineEvent],
    target_packages: Iterable[str],
    grace_ms: int,
    now_ms: int,
) -> list[SessionWithEvents]:
    """Project timeline events into sessions with Start/Pause/Resume/End sub-events.

    Args:
        events: Timeline events, including seed events before the window.
            Re-sorted by timestamp; equal timestamps keep input order.
        target_packages: Target set in effect before the first
            ``TargetAppsChangedEvent``.
        grace_ms: How long an app may be left before its session ends.
        now_ms: Current time, used for a final grace-timeout sweep.

    Returns:
        Sessions ordered by id. Sessions still running or within their grace
        period have no End sub-event.
    """
    projection = _SessionProjection(target_packages, grace_ms)

    for event in sort_events(events):
        # Close anything whose grace period expired before this event
        projection.apply_grace_timeout(event.timestamp_ms)
        projection.apply(event)

    projection.apply_grace_timeout(now_ms)

    sessions = projection.result()
    logger.debug(
        "Projected %d sessions (%d open) from %d events with grace %dms",
        len(sessions),
        len(projection.active),
        len(events),
        grace_ms,
    )
    return sessions
