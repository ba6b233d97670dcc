"""
Staleness rule for the mechanics cache.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

STALENESS_THRESHOLD = timedelta(hours=24)

Timestamp = Union[datetime, str, None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Timestamp) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2025-01-31T08:00:00.000Z"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def needs_refresh(
    last_updated: Timestamp,
    now: Optional[datetime] = None,
    threshold: timedelta = STALENESS_THRESHOLD,
) -> bool:
    """
    True when the cache was never refreshed or is older than ``threshold``.

    An unparseable timestamp counts as never refreshed.
    """
    parsed = parse_timestamp(last_updated)
    if parsed is None:
        return True
    now = parse_timestamp(now) or utcnow()
    return now - parsed > threshold
