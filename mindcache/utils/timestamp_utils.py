"""
Timestamp utilities for consistent UTC handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    Args:
        value: datetime read from a driver or supplied by a caller

    Returns:
        Timezone-aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Union[datetime, str]) -> str:
    """Convert a datetime to ISO-8601; strings pass through unchanged."""
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def parse_iso(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (accepting a trailing ``Z``) into UTC.

    Args:
        value: ISO string, datetime or None

    Returns:
        UTC datetime, or None for empty input

    Raises:
        ValueError: If the string is not a valid timestamp
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(text))


def parse_iso_or_none(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Lenient variant of :func:`parse_iso` for metadata reported by third parties."""
    try:
        return parse_iso(value)
    except (TypeError, ValueError):
        return None
