"""Utility functions for time handling."""

from .timestamps import (
    days_ago,
    ensure_utc,
    format_timestamp_for_log,
    from_storage,
    to_storage,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "to_storage",
    "from_storage",
    "days_ago",
    "format_timestamp_for_log",
]
