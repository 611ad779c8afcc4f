"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_unix(value: str | int | float | None) -> datetime | None:
    """Parse a platform epoch-seconds timestamp ("1704067200") to UTC.

    Returns None for missing or unparsable values.
    """
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(float(value)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime for JSONB storage."""
    return value.isoformat() if value is not None else None


def parse_iso(value: str | datetime | None) -> datetime | None:
    """Inverse of to_iso. timestamptz columns already arrive as datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
