"""Timestamp utilities for UTC handling and queue storage.

Queue rows store their timestamps as fixed-width ISO 8601 strings so that
lexical ordering in the database matches chronological ordering. This module
owns that format:
- Getting current UTC time
- Converting timezone-naive to timezone-aware UTC
- Formatting/parsing the storage representation
- Formatting timestamps for logs
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

# Fixed-width so that string comparison in SQL orders correctly
STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_storage(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for database storage.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        Fixed-width ISO 8601 string with 'Z' suffix, or None

    Example:
        >>> dt = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)
        >>> to_storage(dt)
        '2025-11-04T12:00:00.000000Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None
    return dt_utc.strftime(STORAGE_FORMAT)


def from_storage(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp string back to a UTC datetime.

    Accepts both the storage format and the shorter variant without
    microseconds.

    Args:
        value: Stored timestamp string

    Returns:
        Timezone-aware datetime in UTC, or None for empty values
    """
    if value is None or value == "":
        return None

    stripped = value.rstrip("Z")
    try:
        dt = datetime.strptime(stripped, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(stripped, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Return the UTC instant `days` days before `now`."""
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference - timedelta(days=days)


def format_timestamp_for_log(dt: Optional[datetime]) -> str:
    """Format a datetime for structured logging.

    Uses ISO 8601 format without microseconds for readability.

    Args:
        dt: Datetime to format

    Returns:
        ISO 8601 formatted string with 'Z' suffix (empty string for None)

    Example:
        >>> dt = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)
        >>> format_timestamp_for_log(dt)
        '2025-11-04T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")
