"""
Timestamp and identifier helpers.

All records in jobspine carry timezone-aware UTC datetimes. Naive values
coming from callers are interpreted as UTC rather than local time so that
``scheduled_at <= now`` comparisons never mix aware and naive instants.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize *dt* to an aware UTC datetime (naive input is assumed UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def new_id() -> str:
    """Generate a fresh record identifier."""
    return str(uuid.uuid4())
