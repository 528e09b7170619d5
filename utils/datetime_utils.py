"""
Timezone-aware datetime utilities for the contact import pipeline.

All functions return timezone-aware datetime objects in UTC. SQLite hands
back naive datetimes, so anything read from the database goes through
ensure_utc() before being compared with utc_now().
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Make a datetime timezone-aware in UTC.

    Naive datetimes are assumed to already be in UTC.

    Args:
        dt: Datetime to normalize (may be None)

    Returns:
        Timezone-aware datetime in UTC, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_seconds_ago(seconds: int) -> datetime:
    """
    Get the UTC datetime for N seconds ago.

    Used for retention windows expressed in seconds.
    """
    return utc_now() - timedelta(seconds=seconds)


def format_utc_iso(dt: Optional[datetime] = None) -> Optional[str]:
    """
    Format a datetime as an ISO 8601 string in UTC.

    Args:
        dt: Datetime to format (defaults to now)

    Returns:
        ISO 8601 string, e.g. '2024-01-15T10:30:00+00:00'
    """
    if dt is None:
        dt = utc_now()
    return ensure_utc(dt).isoformat()
