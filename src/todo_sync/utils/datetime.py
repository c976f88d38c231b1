"""Datetime utilities with consistent UTC timezone handling.

All timestamps persisted by todo_sync are timezone-aware UTC datetimes
serialized as ISO 8601 strings.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def now_utc() -> datetime:
    """Return current datetime in UTC timezone."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime is timezone-aware, assuming UTC if naive.

    Args:
        dt: Datetime to check/convert, or None

    Returns:
        Timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - assume UTC
        return dt.replace(tzinfo=timezone.utc)

    return dt


def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO string with timezone info."""
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """Parse a timestamp coming from storage or from the wire.

    Accepts aware or naive datetimes, ISO 8601 strings (including a trailing
    ``Z``) and epoch milliseconds.

    Raises:
        ValueError: If the value is missing or cannot be interpreted
    """
    if value is None or value == "":
        raise ValueError("timestamp is missing")

    if isinstance(value, datetime):
        return ensure_aware(value)

    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_aware(datetime.fromisoformat(text))

    raise ValueError(f"not a timestamp: {value!r}")


def parse_optional_timestamp(value: Any) -> Optional[datetime]:
    """Like :func:`parse_timestamp` but maps missing values to None."""
    if value is None or value == "":
        return None
    return parse_timestamp(value)
