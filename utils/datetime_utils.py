# -*- coding: utf-8 -*-
"""
DateTime Utilities.

All pipeline timestamps are naive UTC datetimes, serialized as ISO strings
in the database.
"""

from datetime import datetime, date, timezone
from typing import Union, Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_isoformat(value: Union[datetime, date, str, None]) -> Optional[str]:
    """
    Convert a datetime-like value to an ISO string for storage.

    Args:
        value: datetime, date, ISO string, or None

    Returns:
        ISO format string, or None when value is None
    """
    if value is None:
        return None

    if isinstance(value, str):
        return value

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat()

    if isinstance(value, date):
        return value.isoformat()

    return str(value)


def from_isoformat(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 value into a naive UTC datetime.

    Accepts a trailing ``Z`` and explicit offsets (converted to UTC).
    Date-only strings parse to midnight.

    Examples:
        >>> from_isoformat('2024-01-15T10:30:00Z')
        datetime.datetime(2024, 1, 15, 10, 30)
        >>> from_isoformat('2024-01-15')
        datetime.datetime(2024, 1, 15, 0, 0)
        >>> from_isoformat('yesterday') is None
        True
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            if "T" in text or " " in text:
                parsed = datetime.fromisoformat(text)
            else:
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
