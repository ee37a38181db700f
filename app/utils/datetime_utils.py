"""
Timezone-aware datetime utilities.

All datetime operations should use these helpers to ensure consistent
timezone handling across the codebase.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are assumed to be UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_pdf_date(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as a PDF date string (ISO 32000-1, 7.9.4).

    Args:
        dt: Timestamp to format, defaults to now

    Returns:
        String like "D:20240113120000+00'00'"
    """
    dt = ensure_utc(dt or utc_now())
    return dt.strftime("D:%Y%m%d%H%M%S") + "+00'00'"


def output_timestamp(dt: Optional[datetime] = None) -> str:
    """Millisecond timestamp used to name output directories."""
    dt = ensure_utc(dt or utc_now())
    return str(int(dt.timestamp() * 1000))
