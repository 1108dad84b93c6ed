"""Timestamp helpers shared by the import and retrieval code."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def from_epoch(ts: Optional[float]) -> Optional[datetime]:
    """Convert seconds since epoch to an aware UTC datetime (None if invalid)."""
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def as_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    everything this package stores is UTC, so naive values are tagged as such.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch(dt: datetime) -> float:
    """Seconds since epoch for a stored or freshly created datetime."""
    return as_utc(dt).timestamp()
