"""
Helpers for normalizing loosely-typed upstream payloads.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def safe_str(value: Any, default: str = "") -> str:
    """Convert to string, substituting `default` for None."""
    if value is None:
        return default
    return str(value)


def safe_int(value: Any, default: int = 0) -> int:
    """
    Convert to int, handling None and invalid values.

    Upstream APIs are inconsistent here: YouTube sends viewer counts
    as strings, PaceMan sends millisecond splits as numbers.
    """
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def optional_int(value: Any) -> Optional[int]:
    """Like safe_int, but keep "absent" distinguishable from zero."""
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (with optional trailing Z) into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive UTC datetime as ISO-8601 with a Z suffix."""
    if value is None:
        return None
    return value.isoformat() + "Z"


def from_epoch(seconds: float) -> datetime:
    """Epoch seconds to naive UTC."""
    return datetime.fromtimestamp(seconds, timezone.utc).replace(tzinfo=None)
