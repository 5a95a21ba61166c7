from __future__ import annotations

import time
from datetime import UTC, datetime


def now_utc() -> datetime:
    """Get current UTC time with timezone."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Get current epoch time in milliseconds."""
    return int(time.time() * 1000)


def to_utc(dt: datetime | None) -> datetime | None:
    """Convert datetime to UTC, handling naive datetimes."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def iso(dt: datetime | None) -> str | None:
    """Convert datetime to ISO format string."""
    if dt is None:
        return None
    return to_utc(dt).isoformat()
