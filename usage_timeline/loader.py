"""Load a window of events together with the seed events that precede it."""

from __future__ import annotations

import logging
from typing import Callable

from usage_timeline.db import EventListener, EventStore
from usage_timeline.events import (
    ForegroundAppEvent,
    TargetAppsChangedEvent,
    TimelineEvent,
    sort_events,
)

logger = logging.getLogger(__name__)


def _is_lookback_exempt(event: TimelineEvent) -> bool:
    # Without these the window's foreground changes cannot be interpreted
    return isinstance(event, (TargetAppsChangedEvent, ForegroundAppEvent))


class WindowEventsLoader:
    """Merge seed events (state before the window) with the window's own events."""

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def _filter_seed(
        self,
        seed: list[TimelineEvent],
        window_start_ms: int,
        seed_lookback_ms: int | None,
    ) -> list[TimelineEvent]:
        if seed_lookback_ms is None:
            return seed

        min_seed_ms = max(window_start_ms - seed_lookback_ms, 0)
        kept = [e for e in seed if e.timestamp_ms >= min_seed_ms or _is_lookback_exempt(e)]
        dropped = [e for e in seed if e.timestamp_ms < min_seed_ms and not _is_lookback_exempt(e)]

        if dropped:
            logger.debug(
                "Seed lookback dropped %d of %d seed events older than %d (window start %d)",
                len(dropped),
                len(seed),
                min_seed_ms,
                window_start_ms,
            )
        return kept

    def load_with_seed(
        self,
        window_start_ms: int,
        window_end_ms: int,
        seed_lookback_ms: int | None = None,
    ) -> list[TimelineEvent]:
        """Return seed events before the window plus the window's events, sorted.

        Args:
            window_start_ms: Inclusive window start.
            window_end_ms: Exclusive window end.
            seed_lookback_ms: Drop seed events older than this before the
                window. Target-set and foreground events are always kept.
        """
        seed = self._filter_seed(
            self._store.get_events_before(window_start_ms), window_start_ms, seed_lookback_ms
        )
        window = self._store.get_events(window_start_ms, window_end_ms)
        if not any(isinstance(e, TargetAppsChangedEvent) for e in seed + window):
            logger.debug(
                "No target app set recorded up to %d; using configured targets only",
                window_end_ms,
            )
        return sort_events(seed + window)

    def observe_with_seed(
        self,
        window_start_ms: int,
        window_end_ms: int,
        listener: EventListener,
        seed_lookback_ms: int | None = None,
    ) -> Callable[[], None]:
        """Like ``load_with_seed`` but pushes a fresh merged list on every change.

        Returns:
            A callable that stops the observation.
        """

        def on_window(window: list[TimelineEvent]) -> None:
            seed = self._filter_seed(
                self._store.get_events_before(window_start_ms), window_start_ms, seed_lookback_ms
            )
            listener(sort_events(seed + window))

        return self._store.observe(window_start_ms, window_end_ms, on_window)
