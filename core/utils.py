"""
Time helpers
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now; every stored timestamp uses this so SQLite and PostgreSQL compare alike."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(timestamp: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a 'Z' suffix so clients know the value is UTC."""
    if timestamp is None:
        return None
    return timestamp.isoformat() + 'Z'


def to_naive_utc(timestamp: Optional[datetime]) -> Optional[datetime]:
    """Aware values are converted to UTC; naive values are taken as UTC already."""
    if timestamp is None or timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(timezone.utc).replace(tzinfo=None)
