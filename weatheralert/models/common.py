"""Time helpers shared across models and storage."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def epoch_ms(dt: datetime | None = None) -> int:
    if dt is None:
        dt = utc_now()
    return int(dt.timestamp() * 1000)


def parse_timestamp(iso_str: str) -> datetime | None:
    """Parse an ISO timestamp, treating naive values as UTC."""
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt
