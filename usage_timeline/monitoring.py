"""Monitoring availability projection.

Monitoring is *enabled* while the service runs and no required permission has
been revoked. It is *active* while it is enabled and the screen is on. A
permission that has never been reported counts as granted, so gaps in
permission instrumentation never zero out the statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, tzinfo
from typing import Iterable, Mapping

from usage_timeline.events import (
    PermissionEvent,
    PermissionKind,
    PermissionState,
    ScreenEvent,
    ScreenState,
    ServiceLifecycleEvent,
    ServiceState,
    TimelineEvent,
    sort_events,
)
from usage_timeline.models import MonitoringPeriod, SessionPart
from usage_timeline.timeutil import MS_PER_MINUTE, day_bounds_ms

logger = logging.getLogger(__name__)

REQUIRED_PERMISSIONS: tuple[PermissionKind, ...] = (
    PermissionKind.USAGE_ACCESS,
    PermissionKind.OVERLAY,
)


def is_monitoring_enabled(
    service_running: bool,
    permission_states: Mapping[PermissionKind, PermissionState],
) -> bool:
    """Service running and no required permission revoked (missing counts as granted)."""
    permissions_ok = all(
        permission_states.get(kind) != PermissionState.REVOKED for kind in REQUIRED_PERMISSIONS
    )
    return service_running and permissions_ok


def is_monitoring_active(
    service_running: bool,
    screen_on: bool,
    permission_states: Mapping[PermissionKind, PermissionState],
) -> bool:
    return screen_on and is_monitoring_enabled(service_running, permission_states)


@dataclass
class _MonitoringState:
    service_running: bool = False
    screen_on: bool = False
    permission_states: dict[PermissionKind, PermissionState] = field(default_factory=dict)

    def apply(self, event: TimelineEvent) -> None:
        if isinstance(event, ServiceLifecycleEvent):
            self.service_running = event.state == ServiceState.STARTED
        elif isinstance(event, ScreenEvent):
            self.screen_on = event.state == ScreenState.ON
        elif isinstance(event, PermissionEvent):
            self.permission_states[event.permission] = event.state
        # Every other event kind leaves availability unchanged.

    def is_active(self) -> bool:
        return is_monitoring_active(self.service_running, self.screen_on, self.permission_states)


def build_monitoring_periods_for_date(
    day: date,
    zone: tzinfo,
    events: list[TimelineEvent],
    now_ms: int,
) -> list[MonitoringPeriod]:
    """Rebuild the monitoring periods of one local day.

    Events before the start of the day only seed the initial state. A period
    still open at the end is closed at ``min(now_ms, end of day)``, so the
    result never contains open-ended periods.

    Args:
        day: Local calendar date.
        zone: Zone defining the day's boundaries.
        events: Events up to the end of the day, including seed events before it.
        now_ms: Current time. Days entirely in the future yield no periods.

    Returns:
        Non-overlapping periods within the day, sorted by start.
    """
    day_start, day_end = day_bounds_ms(day, zone)
    effective_end = min(now_ms, day_end)
    if effective_end <= day_start:
        return []

    ordered = sort_events(events)
    state = _MonitoringState()

    # Seed pass: restore the state at the start of the day
    for event in ordered:
        if event.timestamp_ms >= day_start:
            break
        state.apply(event)

    periods: list[MonitoringPeriod] = []
    active = state.is_active()
    current_start: int | None = day_start if active else None

    for event in ordered:
        ts = event.timestamp_ms
        if ts < day_start:
            continue
        if ts >= effective_end:
            break

        was_active = active
        state.apply(event)
        active = state.is_active()

        if not was_active and active:
            current_start = ts
        elif was_active and not active:
            start = current_start if current_start is not None else day_start
            if ts > start:
                periods.append(MonitoringPeriod(start_ms=start, end_ms=ts))
            current_start = None

    if active:
        start = current_start if current_start is not None else day_start
        if effective_end > start:
            periods.append(MonitoringPeriod(start_ms=start, end_ms=effective_end))

    logger.debug("Built %d monitoring periods for %s", len(periods), day)
    return periods


def _clip(start: int, end: int, lower: int, upper: int) -> tuple[int, int]:
    return max(start, lower), min(end, upper)


def sum_monitoring_minutes_for_day(
    periods: Iterable[MonitoringPeriod],
    day_start_ms: int,
    day_end_ms: int,
    now_ms: int,
) -> int:
    """Total monitored minutes of a day, counted up to ``now_ms`` at most."""
    range_end = min(day_end_ms, now_ms)
    total_ms = 0
    for period in periods:
        start, end = _clip(period.start_ms, period.end_ms, day_start_ms, range_end)
        if end > start:
            total_ms += end - start
    return total_ms // MS_PER_MINUTE


def sum_monitoring_with_target_minutes(
    parts_on_date: Iterable[SessionPart],
    periods: Iterable[MonitoringPeriod],
    day_start_ms: int,
    day_end_ms: int,
    now_ms: int,
) -> int:
    """Minutes during which monitoring was active and a target app was in use."""
    range_end = min(day_end_ms, now_ms)
    clipped_periods = [
        _clip(p.start_ms, p.end_ms, day_start_ms, range_end) for p in periods
    ]
    total_ms = 0
    for part in parts_on_date:
        part_start, part_end = _clip(part.start_ms, part.end_ms, day_start_ms, range_end)
        if part_end <= part_start:
            continue
        for period_start, period_end in clipped_periods:
            overlap_start = max(part_start, period_start)
            overlap_end = min(part_end, period_end)
            if overlap_end > overlap_start:
                total_ms += overlap_end - overlap_start
    return total_ms // MS_PER_MINUTE
