"""
Time utilities for risk operations.

This module provides timezone-aware utilities for:
- Normalizing timestamps to UTC
- Daily lock expiry (next UTC midnight)
- Minute-of-day trading windows, including windows that wrap midnight
- ISO week boundaries for mistake aggregation
- Trading session labels

All times are UTC. Naive datetimes are assumed to already be UTC.
"""

from datetime import datetime, date, time, timedelta
from typing import Optional

from propguard.lib.constants import (
    UTC_TIMEZONE,
    MINUTES_PER_DAY,
    TRADING_SESSIONS,
    AFTER_HOURS_SESSION,
)


def get_utc_now() -> datetime:
    """
    Get current time in UTC.

    Returns:
        Current timezone-aware datetime in UTC
    """
    return datetime.now(UTC_TIMEZONE)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Handles both naive and aware datetimes:
    - Naive datetimes are assumed to be UTC
    - Aware datetimes are converted to UTC

    Args:
        dt: Datetime to convert

    Returns:
        Datetime in UTC timezone
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC_TIMEZONE)
    return dt.astimezone(UTC_TIMEZONE)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) into UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601 UTC, or None."""
    if dt is None:
        return None
    return to_utc(dt).isoformat()


def next_utc_midnight(dt: Optional[datetime] = None) -> datetime:
    """
    Get the next UTC midnight strictly after the given time.

    Daily-loss and profit locks expire here.

    Args:
        dt: Reference time (default: current time)

    Returns:
        Midnight UTC at the start of the following day
    """
    if dt is None:
        dt = get_utc_now()
    else:
        dt = to_utc(dt)

    tomorrow = dt.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time(0, 0), tzinfo=UTC_TIMEZONE)


def minute_of_day(dt: datetime) -> int:
    """Get the UTC minute of day (0-1439) for a datetime."""
    dt = to_utc(dt)
    return dt.hour * 60 + dt.minute


def parse_hhmm(value: str) -> int:
    """
    Parse an "HH:MM" string into a minute of day.

    Args:
        value: Time string such as "22:00"

    Returns:
        Minute of day (0-1439)

    Raises:
        ValueError: If the string is malformed or out of range
    """
    if not isinstance(value, str) or ":" not in value:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")

    hours_str, minutes_str = value.strip().split(":", 1)
    try:
        hours = int(hours_str)
        minutes = int(minutes_str)
    except ValueError:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM") from None

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Time {value!r} out of range")

    return hours * 60 + minutes


def format_hhmm(minute: int) -> str:
    """Format a minute of day as "HH:MM"."""
    minute = minute % MINUTES_PER_DAY
    return f"{minute // 60:02d}:{minute % 60:02d}"


def is_within_window(minute: int, start_minute: int, end_minute: int) -> bool:
    """
    Check whether a minute of day falls inside a trading window.

    A regular window is half-open, ``[start, end)``. When ``start > end`` the
    window crosses midnight and membership is ``minute >= start or
    minute <= end``.

    Args:
        minute: Minute of day being tested
        start_minute: Window start (minute of day)
        end_minute: Window end (minute of day)

    Returns:
        True if the minute is inside the window
    """
    if start_minute <= end_minute:
        return start_minute <= minute < end_minute
    return minute >= start_minute or minute <= end_minute


def week_start(dt: datetime) -> date:
    """
    Get the Monday that starts the ISO week containing ``dt`` (UTC).

    Args:
        dt: Any datetime in the week

    Returns:
        Date of that week's Monday
    """
    day = to_utc(dt).date()
    return day - timedelta(days=day.weekday())


def get_trading_session(dt: datetime) -> str:
    """
    Label the trading session a UTC timestamp falls in.

    Args:
        dt: Timestamp to classify

    Returns:
        One of asian, london, overlap, new_york, after_hours
    """
    hour = to_utc(dt).hour
    for name, start_hour, end_hour in TRADING_SESSIONS:
        if start_hour <= hour < end_hour:
            return name
    return AFTER_HOURS_SESSION
