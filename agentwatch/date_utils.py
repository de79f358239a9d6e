"""Shared datetime normalization helpers."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_rfc3339(value: datetime | None) -> str:
    if value is None:
        return ""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: Any) -> datetime | None:
    """Parse RFC3339-ish input (str, datetime, date) into an aware datetime.

    Returns None for anything that does not look like a timestamp.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    token = value.strip().strip('"').strip("'")
    if not token:
        return None
    try:
        parsed = datetime.fromisoformat(token.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)


def to_epoch(value: datetime | None) -> float:
    if value is None:
        return 0.0
    return ensure_utc(value).timestamp()


def format_duration(seconds: float) -> str:
    """Human duration: 1h5m, 12m, 3m20s, 45s."""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h{minutes}m"
    if minutes >= 10:
        return f"{minutes}m"
    if minutes > 0:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
