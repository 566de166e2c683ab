"""UTC calendar-date helpers. All dates are ISO ``YYYY-MM-DD`` strings."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

DAY_MS = 24 * 3600 * 1000
MAX_UNIX_SECONDS = 253402300799  # 9999-12-31T23:59:59Z


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_iso(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return now.astimezone(timezone.utc).date().isoformat()


def iso_date_from_unix(seconds: int) -> str:
    """UTC date of a unix timestamp; ValueError outside 1970..9999."""
    seconds = int(seconds)
    if not 0 <= seconds <= MAX_UNIX_SECONDS:
        raise ValueError(f"Timestamp out of range: {seconds}")
    return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()


def parse_iso_date(value: str) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def is_iso_date(value: str) -> bool:
    return isinstance(value, str) and len(value) == 10 and parse_iso_date(value) is not None


def days_between_inclusive(start_date: str, end_date: str) -> int:
    """Whole days from start to end, counting the start day itself as day 1.

    A start date after the end date, or an unparseable date, yields 0.
    """
    a = parse_iso_date(start_date)
    b = parse_iso_date(end_date)
    if a is None or b is None:
        return 0
    diff = (b - a).days
    return 0 if diff < 0 else diff + 1


def add_days(iso: str, days: int) -> str:
    d = parse_iso_date(iso)
    if d is None:
        raise ValueError(f"Invalid date: {iso!r}")
    return (d + timedelta(days=days)).isoformat()


def next_utc_midnight_ms(now: Optional[datetime] = None) -> int:
    now = (now or utcnow()).astimezone(timezone.utc)
    midnight = datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)
    return int(midnight.timestamp() * 1000)
