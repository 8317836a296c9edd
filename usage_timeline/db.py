"""SQLite event log for the usage timeline.

The log is append-only. Everything else (sessions, parts, monitoring periods,
stats) is derived from it on read.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from usage_timeline.events import (
    PermissionEvent,
    TimelineEvent,
    dump_event,
    parse_event,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp_ms INTEGER NOT NULL,
    kind TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp_ms);
CREATE INDEX IF NOT EXISTS idx_events_kind_timestamp ON events(kind, timestamp_ms);
"""

logger = logging.getLogger(__name__)

# Kinds whose latest occurrence before a window fully describes a piece of state
SEED_KINDS = ("service_lifecycle", "screen", "foreground_app", "target_apps_changed")

# Permission kinds are few; this bounds the scan for the latest state of each
PERMISSION_SEED_SCAN_LIMIT = 32

EventListener = Callable[[list[TimelineEvent]], None]


class EventStoreError(Exception):
    """Raised when the event database cannot be opened."""


def _row_to_event(row: sqlite3.Row) -> TimelineEvent | None:
    """Decode a stored row, skipping rows this version does not understand."""
    try:
        data = json.loads(row["data"])
        data["kind"] = row["kind"]
        data["timestamp_ms"] = row["timestamp_ms"]
        return parse_event(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Skipping undecodable event id=%s kind=%s: %s", row["id"], row["kind"], e)
        return None


def _decode_rows(rows: Iterable[sqlite3.Row]) -> list[TimelineEvent]:
    events = []
    for row in rows:
        event = _row_to_event(row)
        if event is not None:
            events.append(event)
    return events


class EventStore:
    """SQLite-backed timeline event log.

    Not thread-safe. Each thread should have its own EventStore instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._listeners: list[tuple[int, int, EventListener]] = []
        self._init_schema()

    def __enter__(self) -> "EventStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._listeners.clear()
        self._conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path) -> EventStore:
        """Open or create a database at the given path.

        Raises:
            EventStoreError: If the file cannot be opened as a database.
        """
        try:
            conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            raise EventStoreError(f"Cannot open event database {path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            return cls(conn)
        except sqlite3.Error as e:
            conn.close()
            raise EventStoreError(f"Cannot open event database {path}: {e}") from e

    @classmethod
    def open_in_memory(cls) -> EventStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    def _insert(self, event: TimelineEvent) -> int:
        data = dump_event(event)
        kind = data.pop("kind")
        timestamp_ms = data.pop("timestamp_ms")
        cursor = self._conn.execute(
            "INSERT INTO events (timestamp_ms, kind, data) VALUES (?, ?, ?)",
            (timestamp_ms, kind, json.dumps(data, sort_keys=True)),
        )
        return int(cursor.lastrowid or 0)

    def append(self, event: TimelineEvent) -> int:
        """Append an event to the log. Returns the row ID."""
        event_id = self._insert(event)
        self._conn.commit()
        self._notify([event.timestamp_ms])
        return event_id

    def append_many(self, events: Iterable[TimelineEvent]) -> int:
        """Append events in one transaction. Returns the number appended."""
        timestamps: list[int] = []
        with self._conn:  # Automatic transaction handling (commits on success)
            for event in events:
                self._insert(event)
                timestamps.append(event.timestamp_ms)
        self._notify(timestamps)
        return len(timestamps)

    def get_events(
        self,
        start_ms: int | None = None,
        end_ms: int | None = None,
        *,
        kind: str | None = None,
        limit: int | None = None,
    ) -> list[TimelineEvent]:
        """Query events, optionally filtered by time range and kind.

        Args:
            start_ms: Inclusive lower bound.
            end_ms: Exclusive upper bound.
            kind: Filter by event kind.
            limit: Maximum number of events to return.

        Returns:
            Events ordered by timestamp ascending, insertion order on ties.
        """
        query = "SELECT * FROM events WHERE 1=1"
        params: list[str | int] = []

        if start_ms is not None:
            query += " AND timestamp_ms >= ?"
            params.append(start_ms)
        if end_ms is not None:
            query += " AND timestamp_ms < ?"
            params.append(end_ms)
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind)

        query += " ORDER BY timestamp_ms ASC, id ASC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        return _decode_rows(self._conn.execute(query, params).fetchall())

    def get_events_before(self, before_ms: int) -> list[TimelineEvent]:
        """Get the seed events needed to restore state at ``before_ms``.

        Returns the latest event of each state-bearing kind plus the latest
        event of each permission kind, ordered by timestamp.
        """
        rows: list[sqlite3.Row] = []
        for kind in SEED_KINDS:
            row = self._conn.execute(
                """
                SELECT * FROM events
                WHERE kind = ? AND timestamp_ms < ?
                ORDER BY timestamp_ms DESC, id DESC
                LIMIT 1
                """,
                (kind, before_ms),
            ).fetchone()
            if row is not None:
                rows.append(row)

        seeds = _decode_rows(rows)

        recent_permissions = self._conn.execute(
            """
            SELECT * FROM events
            WHERE kind = 'permission' AND timestamp_ms < ?
            ORDER BY timestamp_ms DESC, id DESC
            LIMIT ?
            """,
            (before_ms, PERMISSION_SEED_SCAN_LIMIT),
        ).fetchall()
        seen_permissions = set()
        for event in _decode_rows(recent_permissions):
            if isinstance(event, PermissionEvent) and event.permission not in seen_permissions:
                seen_permissions.add(event.permission)
                seeds.append(event)

        return sorted(seeds, key=lambda e: e.timestamp_ms)

    def observe(self, start_ms: int, end_ms: int, listener: EventListener) -> Callable[[], None]:
        """Push the window's events to ``listener`` now and after each relevant append.

        Returns:
            A callable that unsubscribes the listener.
        """
        entry = (start_ms, end_ms, listener)
        self._listeners.append(entry)
        listener(self.get_events(start_ms, end_ms))

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, timestamps: list[int]) -> None:
        for start_ms, end_ms, listener in list(self._listeners):
            if any(start_ms <= ts < end_ms for ts in timestamps):
                listener(self.get_events(start_ms, end_ms))

    def get_kind_summary(self) -> list[dict[str, Any]]:
        """Get the most recent event timestamp and count for each kind.

        Returns list of dicts with keys: kind, last_timestamp_ms, event_count.
        Ordered by last_timestamp_ms descending (most recent first).
        """
        cursor = self._conn.execute("""
            SELECT
                kind,
                MAX(timestamp_ms) as last_timestamp_ms,
                COUNT(*) as event_count
            FROM events
            GROUP BY kind
            ORDER BY last_timestamp_ms DESC
        """)
        return [dict(row) for row in cursor.fetchall()]
