"""UTC datetime utilities."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def epoch_ms(dt: datetime) -> int:
    """Milliseconds since the Unix epoch for an aware datetime."""
    return int(dt.timestamp() * 1000)
