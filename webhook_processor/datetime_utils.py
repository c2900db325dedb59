"""
DateTime utility functions for the application.

The database stores naive UTC timestamps; everything here follows that rule.
"""
from datetime import datetime, timezone


def utcnow():
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt):
    """
    Normalize a datetime or ISO string to naive UTC.

    Args:
        dt: datetime object, ISO string, or None

    Returns:
        datetime or None
    """
    if dt is None:
        return None

    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace('Z', '+00:00'))

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_iso_utc(dt):
    """
    Format a naive UTC datetime as an ISO 8601 string with a trailing Z.
    Returns format like: "2025-10-15T14:30:45.123000Z"
    """
    if not dt:
        return None
    dt = to_naive_utc(dt)
    return dt.isoformat(timespec="milliseconds") + "Z"
