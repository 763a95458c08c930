"""
Datetime utility functions for handling timezone-aware datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC timezone.

    This utility provides a consistent, mockable way to get the current UTC time
    throughout the engine. Timers, pause markers and off-page intervals all read
    the clock through this function so tests can freeze or advance it.

    Returns:
        A timezone-aware datetime object representing the current time in UTC.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware (UTC).
    Collaborator payloads may carry naive ISO timestamps.

    Args:
        dt: The datetime to ensure is timezone-aware

    Returns:
        A timezone-aware datetime object in UTC

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def whole_seconds_between(start: datetime, end: datetime) -> int:
    """Return the floored number of seconds from start to end (may be negative)."""
    delta = ensure_timezone_aware(end) - ensure_timezone_aware(start)
    return int(delta.total_seconds() // 1)
