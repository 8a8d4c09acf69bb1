from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every persisted timestamp uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_from(now: datetime, seconds: float) -> datetime:
    return now + timedelta(seconds=seconds)
