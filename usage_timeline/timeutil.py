"""Epoch-millisecond and local calendar day helpers."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from dateutil import tz

MS_PER_MINUTE = 60_000
MINUTES_PER_DAY = 24 * 60

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def resolve_zone(name: str | None = None) -> tzinfo:
    """Return the named IANA zone, or the system local zone when ``name`` is empty.

    The system zone looks up its offset per instant, so dates on the other
    side of a DST change get their own offset.
    """
    if name:
        return ZoneInfo(name)
    return tz.tzlocal()


def to_local(ms: int, zone: tzinfo) -> datetime:
    return (_EPOCH + timedelta(milliseconds=ms)).astimezone(zone)


def to_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return (value - _EPOCH) // _ONE_MS


def now_ms() -> int:
    return to_ms(datetime.now(timezone.utc))


def local_date_of(ms: int, zone: tzinfo) -> date:
    return to_local(ms, zone).date()


def start_of_day_ms(day: date, zone: tzinfo) -> int:
    return to_ms(datetime.combine(day, time(), tzinfo=zone))


def day_bounds_ms(day: date, zone: tzinfo) -> tuple[int, int]:
    """Get start of day to start of next day in epoch milliseconds.

    Returns:
        Tuple of (start, end) with start inclusive and end exclusive.
    """
    return start_of_day_ms(day, zone), start_of_day_ms(day + timedelta(days=1), zone)


def minute_of_day(ms: int, zone: tzinfo) -> int:
    """Wall-clock minute of the local day, truncated (0..1439)."""
    local = to_local(ms, zone)
    return local.hour * 60 + local.minute


def parse_day(value: str) -> date:
    """Parse ``YYYY-MM-DD``.

    Raises:
        ValueError: If the string is not a valid date.
    """
    return datetime.strptime(value, "%Y-%m-%d").date()
