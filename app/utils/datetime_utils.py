"""
Timezone-aware datetime utilities.

All datetime operations should use these helpers to ensure consistent
timezone handling across the codebase.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def parse_db_timestamp(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse timestamp from database, ensuring timezone-aware UTC.

    Handles:
    - ISO format strings with Z suffix
    - ISO format strings with +00:00 offset
    - Naive datetimes (assumed UTC)
    - Already timezone-aware datetimes

    Returns:
        Timezone-aware datetime in UTC, or None if input is None/empty/unparseable
    """
    if value is None:
        return None

    if isinstance(value, str):
        if not value:
            return None
        value = value.replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    elif isinstance(value, datetime):
        dt = value
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt


def is_older(
    candidate: Optional[Union[str, datetime]],
    reference: Optional[Union[str, datetime]],
) -> bool:
    """
    True only when both timestamps parse and candidate is strictly older.

    Missing or unparseable timestamps never count as older, so a record
    without a revision always replaces the local copy.
    """
    a = parse_db_timestamp(candidate)
    b = parse_db_timestamp(reference)
    if a is None or b is None:
        return False
    return a < b


def time_ago(value: Optional[Union[str, datetime]], now: Optional[datetime] = None) -> str:
    """Short relative label used in notification lists: "5 min ago"."""
    dt = parse_db_timestamp(value)
    if dt is None:
        return ""
    seconds = int(((now or utc_now()) - dt).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)} sec ago"
    if seconds < 3600:
        return f"{seconds // 60} min ago"
    if seconds < 86400:
        return f"{seconds // 3600} hr ago"
    return f"{seconds // 86400} days ago"
