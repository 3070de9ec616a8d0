"""
Time helpers shared by the workflow managers and response schemas.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_duration(start: Optional[datetime], end: Optional[datetime] = None) -> str:
    """
    Human readable span between two instants, e.g. "2h 30m" or "1d 5h 20m".

    Returns "N/A" without a start and "0m" for negative spans. Minutes are
    always shown when nothing larger is.
    """
    if start is None:
        return "N/A"

    end = end or utcnow()
    diff = as_utc(end) - as_utc(start)
    total_minutes = int(diff.total_seconds() // 60)
    if total_minutes < 0:
        return "0m"

    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or not parts:
        parts.append(f"{minutes}m")
    return " ".join(parts)
