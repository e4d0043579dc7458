"""
Time helpers.

All timestamps stored in the database are naive UTC datetimes.
"""
import re
from datetime import datetime, timezone
from typing import Optional

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp into a naive UTC datetime.

    Twitch sends nanosecond precision ("2019-11-16T10:11:12.634234626Z");
    digits past microseconds are dropped. Returns None if parsing fails.
    """
    if not value:
        return None
    normalized = _FRACTION_RE.sub(r".\1", value.strip())
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_rfc3339(value: datetime) -> str:
    """Format a naive UTC datetime the way Discord and Twitch expect."""
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")
