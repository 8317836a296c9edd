"""Tests for projecting timeline events into sessions."""

from usage_timeline.events import (
    ForegroundAppEvent,
    PermissionEvent,
    PermissionKind,
    PermissionState,
    ScreenEvent,
    ScreenState,
    ServiceLifecycleEvent,
    ServiceState,
    SettingsChangedEvent,
    SuggestionDecision,
    SuggestionDecisionEvent,
    SuggestionShownEvent,
    TargetAppsChangedEvent,
)
from usage_timeline.models import SessionSubEventType as T
from usage_timeline.session_projector import project_sessions

VIDEO = "com.example.video"
SNS = "com.example.sns"
TARGETS = {VIDEO, SNS}


def fg(ts: int, package_id: str | None = None) -> ForegroundAppEvent:
    return ForegroundAppEvent(timestamp_ms=ts, package_id=package_id)


def shape(swe) -> list[tuple[T, int]]:
    """(type, timestamp) pairs of a session's sub-events."""
    return [(e.type, e.timestamp_ms) for e in swe.events]


class TestScenarios:
    """The reference scenarios for session boundaries."""

    def test_simple_session(self):
        """Leaving the app after 30 minutes ends the session where it was left."""
        events = [fg(0, VIDEO), fg(1_800_000, None)]
        sessions = project_sessions(events, TARGETS, grace_ms=30_000, now_ms=1_900_000)

        assert len(sessions) == 1
        assert sessions[0].session.package_id == VIDEO
        assert shape(sessions[0]) == [(T.START, 0), (T.END, 1_800_000)]

    def test_grace_reuse(self):
        """Returning within the grace period resumes the same session."""
        events = [fg(0, VIDEO), fg(60_000), fg(90_000, VIDEO), fg(200_000)]
        sessions = project_sessions(events, TARGETS, grace_ms=120_000, now_ms=400_000)

        assert len(sessions) == 1
        assert shape(sessions[0]) == [
            (T.START, 0),
            (T.PAUSE, 60_000),
            (T.RESUME, 90_000),
            (T.END, 200_000),
        ]

    def test_grace_exceeded(self):
        """Returning after the grace period starts a new session; the old End is backdated."""
        events = [fg(0, VIDEO), fg(60_000), fg(250_000, VIDEO)]
        sessions = project_sessions(events, TARGETS, grace_ms=120_000, now_ms=260_000)

        assert len(sessions) == 2
        first, second = sessions
        assert shape(first) == [(T.START, 0), (T.END, 60_000)]
        assert shape(second) == [(T.START, 250_000)]
        assert first.session.id < second.session.id


class TestGracePeriod:
    """Tests for grace-period handling."""

    def test_session_in_grace_has_no_end(self):
        """A session left less than the grace period ago is still open."""
        events = [fg(0, VIDEO), fg(60_000)]
        sessions = project_sessions(events, TARGETS, grace_ms=120_000, now_ms=100_000)

        assert len(sessions) == 1
        assert not sessions[0].is_finished
        assert shape(sessions[0]) == [(T.START, 0), (T.PAUSE, 60_000)]

    def test_final_sweep_uses_now(self):
        """The same events end the session once now passes the grace period."""
        events = [fg(0, VIDEO), fg(60_000)]
        sessions = project_sessions(events, TARGETS, grace_ms=120_000, now_ms=180_000)

        assert sessions[0].is_finished
        assert sessions[0].events[-1].timestamp_ms == 60_000

    def test_grace_monotonicity(self):
        """More grace never produces more sessions."""
        events = [
            fg(0, VIDEO),
            fg(10_000),
            fg(20_000, VIDEO),
            fg(100_000),
            fg(400_000, VIDEO),
            fg(410_000, SNS),
            fg(2_000_000, VIDEO),
            fg(2_100_000),
        ]
        counts = [
            len(project_sessions(events, TARGETS, grace_ms=grace, now_ms=5_000_000))
            for grace in (0, 5_000, 60_000, 300_000, 10_000_000)
        ]
        assert counts == sorted(counts, reverse=True)
        assert counts[0] > counts[-1]

    def test_no_overlapping_sessions_per_package(self):
        """Sessions of one package never overlap."""
        events = [
            fg(0, VIDEO),
            fg(10_000, SNS),
            fg(50_000, VIDEO),
            fg(200_000),
            fg(300_000, VIDEO),
            fg(310_000, SNS),
            fg(320_000, VIDEO),
        ]
        now = 1_000_000
        sessions = project_sessions(events, TARGETS, grace_ms=30_000, now_ms=now)

        ranges: dict[str, list[tuple[int, int]]] = {}
        for swe in sessions:
            start = swe.events[0].timestamp_ms
            end = swe.events[-1].timestamp_ms if swe.is_finished else now
            ranges.setdefault(swe.session.package_id, []).append((start, end))

        for package_ranges in ranges.values():
            package_ranges.sort()
            for (_, prev_end), (next_start, _) in zip(package_ranges, package_ranges[1:]):
                assert prev_end <= next_start


class TestForegroundChanges:
    """Tests for foreground app transitions."""

    def test_non_target_app_ignored(self):
        sessions = project_sessions(
            [fg(0, "com.example.mail"), fg(1000)], TARGETS, grace_ms=0, now_ms=2000
        )
        assert sessions == []

    def test_switching_between_targets(self):
        """Switching apps pauses one session and starts the other."""
        events = [fg(0, VIDEO), fg(1000, SNS), fg(2000, VIDEO)]
        sessions = project_sessions(events, TARGETS, grace_ms=60_000, now_ms=3000)

        assert [s.session.package_id for s in sessions] == [VIDEO, SNS]
        assert shape(sessions[0]) == [(T.START, 0), (T.PAUSE, 1000), (T.RESUME, 2000)]
        assert shape(sessions[1]) == [(T.START, 1000), (T.PAUSE, 2000)]

    def test_unsorted_input_is_sorted(self):
        """Out-of-order events give the same sessions as ordered ones."""
        events = [fg(0, VIDEO), fg(60_000), fg(90_000, VIDEO), fg(200_000)]
        ordered = project_sessions(events, TARGETS, grace_ms=120_000, now_ms=400_000)
        shuffled = project_sessions(
            list(reversed(events)), TARGETS, grace_ms=120_000, now_ms=400_000
        )
        assert ordered == shuffled

    def test_settings_changes_do_not_affect_sessions(self):
        events = [fg(0, VIDEO), SettingsChangedEvent(timestamp_ms=500, key="grace"), fg(1000)]
        sessions = project_sessions(events, TARGETS, grace_ms=0, now_ms=2000)
        assert shape(sessions[0]) == [(T.START, 0), (T.END, 1000)]


class TestScreenState:
    """Tests for screen on/off."""

    def test_screen_off_pauses_and_on_resumes(self):
        events = [
            fg(0, VIDEO),
            ScreenEvent(timestamp_ms=1000, state=ScreenState.OFF),
            ScreenEvent(timestamp_ms=2000, state=ScreenState.ON),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=60_000, now_ms=3000)

        assert shape(sessions[0]) == [(T.START, 0), (T.PAUSE, 1000), (T.RESUME, 2000)]

    def test_foreground_while_screen_off_does_not_start(self):
        events = [
            ScreenEvent(timestamp_ms=0, state=ScreenState.OFF),
            fg(1000, VIDEO),
        ]
        assert project_sessions(events, TARGETS, grace_ms=0, now_ms=2000) == []


class TestMonitoringChanges:
    """Tests for service lifecycle and permission changes."""

    def test_required_permission_revoked_pauses(self):
        """Revocation pauses; a later foreground event is needed to resume."""
        events = [
            fg(0, VIDEO),
            PermissionEvent(
                timestamp_ms=1000,
                permission=PermissionKind.OVERLAY,
                state=PermissionState.REVOKED,
            ),
            PermissionEvent(
                timestamp_ms=2000,
                permission=PermissionKind.OVERLAY,
                state=PermissionState.GRANTED,
            ),
            fg(3000, VIDEO),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=60_000, now_ms=4000)

        assert len(sessions) == 1
        assert shape(sessions[0]) == [(T.START, 0), (T.PAUSE, 1000), (T.RESUME, 3000)]

    def test_notification_permission_not_required(self):
        events = [
            fg(0, VIDEO),
            PermissionEvent(
                timestamp_ms=1000,
                permission=PermissionKind.NOTIFICATION,
                state=PermissionState.REVOKED,
            ),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=0, now_ms=2000)
        assert shape(sessions[0]) == [(T.START, 0)]

    def test_service_stop_closes_sessions(self):
        """Stopping the service ends sessions immediately, ignoring grace."""
        events = [
            fg(0, VIDEO),
            ServiceLifecycleEvent(timestamp_ms=5000, state=ServiceState.STOPPED),
            fg(6000, VIDEO),
            ServiceLifecycleEvent(timestamp_ms=7000, state=ServiceState.STARTED),
            fg(8000, VIDEO),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=10_000_000, now_ms=9000)

        assert len(sessions) == 2
        assert shape(sessions[0]) == [(T.START, 0), (T.END, 5000)]
        assert shape(sessions[1]) == [(T.START, 8000)]


class TestTargetAppChanges:
    """Tests for changes of the target set."""

    def test_removed_target_closed(self):
        events = [
            fg(0, VIDEO),
            TargetAppsChangedEvent(timestamp_ms=1000, target_packages=frozenset({SNS})),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=60_000, now_ms=2000)
        assert shape(sessions[0]) == [(T.START, 0), (T.END, 1000)]

    def test_added_target_tracked(self):
        events = [
            TargetAppsChangedEvent(timestamp_ms=0, target_packages=frozenset({VIDEO})),
            fg(100, VIDEO),
        ]
        sessions = project_sessions(events, set(), grace_ms=0, now_ms=200)
        assert [s.session.package_id for s in sessions] == [VIDEO]


class TestSuggestionSubEvents:
    """Tests for suggestion prompts recorded on sessions."""

    def test_prompt_attached_to_foreground_session(self):
        events = [
            fg(0, VIDEO),
            SuggestionShownEvent(timestamp_ms=1000, suggestion_id=7),
            SuggestionDecisionEvent(
                timestamp_ms=2000, suggestion_id=7, decision=SuggestionDecision.SNOOZED
            ),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=0, now_ms=3000)

        assert shape(sessions[0]) == [
            (T.START, 0),
            (T.SUGGESTION_SHOWN, 1000),
            (T.SUGGESTION_SNOOZED, 2000),
        ]
        assert sessions[0].events[1].suggestion_id == 7

    def test_prompt_with_explicit_package(self):
        events = [
            fg(0, VIDEO),
            fg(1000, SNS),
            SuggestionShownEvent(timestamp_ms=1500, suggestion_id=1, package_id=VIDEO),
        ]
        sessions = project_sessions(events, TARGETS, grace_ms=60_000, now_ms=2000)

        video = next(s for s in sessions if s.session.package_id == VIDEO)
        sns = next(s for s in sessions if s.session.package_id == SNS)
        assert (T.SUGGESTION_SHOWN, 1500) in shape(video)
        assert all(e.type != T.SUGGESTION_SHOWN for e in sns.events)

    def test_prompt_without_session_ignored(self):
        events = [SuggestionShownEvent(timestamp_ms=0, suggestion_id=1, package_id=VIDEO)]
        assert project_sessions(events, TARGETS, grace_ms=0, now_ms=10) == []
