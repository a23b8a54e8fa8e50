"""
UTC time helpers.

All trip windows and audit timestamps are compared as timezone-aware UTC.
Some drivers (SQLite in tests) hand back naive datetimes, which are taken
to already be in UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
