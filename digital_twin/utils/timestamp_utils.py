"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 string.

    Naive datetimes are treated as UTC.

    Args:
        value: datetime to convert (None passes through)

    Returns:
        ISO-8601 string or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: Union[str, datetime, None], default: Optional[datetime] = None) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix accepted) into an aware datetime.

    Args:
        value: ISO string, datetime or None
        default: Returned when value is missing or unparseable

    Returns:
        datetime object in UTC when no offset was given
    """
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
