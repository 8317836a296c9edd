"""Wire the event log and settings to the projection pipeline.

Every change recomputes the whole window from scratch. When changes arrive
faster than results, only the newest result is delivered.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import date
from typing import Callable, Generic, TypeVar

from usage_timeline.db import EventStore
from usage_timeline.events import TimelineEvent
from usage_timeline.loader import WindowEventsLoader
from usage_timeline.models import DailyStats
from usage_timeline.projection import TimelineProjection, build_daily_stats_for_date, project_timeline
from usage_timeline.settings import InterpretationSettings
from usage_timeline.timeutil import day_bounds_ms, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sessions overlapping a day may have started this long before its midnight
DEFAULT_STATS_LOOKBACK_MS = 36 * 3_600_000


class LatestResultSlot(Generic[T]):
    """Run submitted computations and deliver only the newest one's result.

    A computation superseded by a later submission is cancelled if it has not
    started, and its result is discarded if it has.
    """

    def __init__(
        self,
        consumer: Callable[[T], None],
        *,
        executor: Executor | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._consumer = consumer
        self._on_error = on_error
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="ut-recompute"
        )
        self._lock = threading.RLock()
        self._generation = 0
        self._pending: Future[T] | None = None

    def __enter__(self) -> "LatestResultSlot[T]":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def submit(self, compute: Callable[[], T]) -> Future[T]:
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._pending is not None:
                self._pending.cancel()
            future = self._executor.submit(compute)
            self._pending = future
        future.add_done_callback(lambda f: self._deliver(generation, f))
        return future

    def _deliver(self, generation: int, future: Future[T]) -> None:
        if future.cancelled():
            logger.debug("Recomputation %d cancelled before it started", generation)
            return
        error = future.exception()
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale result of recomputation %d", generation)
                return
            if error is not None:
                logger.error("Recomputation %d failed: %s", generation, error)
                if self._on_error is not None:
                    self._on_error(error)
                return
            self._consumer(future.result())

    def close(self) -> None:
        """Stop accepting work and wait for running computations."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)


class DailyStatsService:
    """Daily statistics over an EventStore, interpreted with the current settings."""

    def __init__(
        self,
        store: EventStore,
        settings_provider: Callable[[], InterpretationSettings],
        *,
        clock: Callable[[], int] = now_ms,
        seed_lookback_ms: int | None = None,
        stats_lookback_ms: int = DEFAULT_STATS_LOOKBACK_MS,
    ) -> None:
        self._loader = WindowEventsLoader(store)
        self._settings_provider = settings_provider
        self._clock = clock
        self._seed_lookback_ms = seed_lookback_ms
        self._stats_lookback_ms = stats_lookback_ms

    def _now_for_day(self, day_end_ms: int) -> int:
        # Past days are evaluated as of their last millisecond
        return min(self._clock(), day_end_ms - 1)

    def _window(self, day: date) -> tuple[int, int]:
        """Events loaded for a day start early enough to see sessions that cross into it."""
        day_start, day_end = day_bounds_ms(day, self._settings_provider().zone())
        return max(day_start - self._stats_lookback_ms, 0), day_end

    def _build(self, day: date, events: list[TimelineEvent]) -> DailyStats | None:
        settings = self._settings_provider()
        zone = settings.zone()
        day_start, day_end = day_bounds_ms(day, zone)
        if not any(day_start <= e.timestamp_ms < day_end for e in events):
            return None
        return build_daily_stats_for_date(
            day,
            zone,
            events,
            settings.target_packages,
            settings.interpretation(),
            self._now_for_day(day_end),
        )

    def calculate_for_date(self, day: date) -> DailyStats | None:
        """Compute one day's stats once.

        Returns:
            None when the day has no events or nothing measurable happened.
        """
        window_start, window_end = self._window(day)
        events = self._loader.load_with_seed(window_start, window_end, self._seed_lookback_ms)
        return self._build(day, events)

    def project_day(self, day: date) -> TimelineProjection:
        """Sessions and parts projected from the day's window, including sessions that
        started before it and ended on it."""
        settings = self._settings_provider()
        zone = settings.zone()
        window_start, day_end = self._window(day)
        events = self._loader.load_with_seed(window_start, day_end, self._seed_lookback_ms)
        return project_timeline(
            events,
            settings.target_packages,
            settings.interpretation(),
            self._now_for_day(day_end),
            zone,
        )

    def observe_date(
        self,
        day: date,
        callback: Callable[[DailyStats | None], None],
        *,
        executor: Executor | None = None,
    ) -> Callable[[], None]:
        """Recompute the day's stats on every change to its events.

        Settings are re-read on each recomputation. Results are delivered to
        ``callback`` latest-wins.

        Returns:
            A callable that stops observing and waits for running work.
        """
        slot: LatestResultSlot[DailyStats | None] = LatestResultSlot(callback, executor=executor)
        window_start, window_end = self._window(day)

        def on_events(events: list[TimelineEvent]) -> None:
            slot.submit(lambda: self._build(day, events))

        unsubscribe = self._loader.observe_with_seed(
            window_start, window_end, on_events, self._seed_lookback_ms
        )

        def stop() -> None:
            unsubscribe()
            slot.close()

        return stop
