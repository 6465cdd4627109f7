from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    """Return a tz-aware UTC timestamp."""
    return datetime.now(UTC)


def epoch_millis(value: datetime | None = None) -> int:
    """Milliseconds since the Unix epoch (defaults to now)."""
    dt = value or utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)
