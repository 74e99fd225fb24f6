from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    All notification timestamps are stored this way.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def utc_day_bounds(dt: datetime) -> Tuple[datetime, datetime]:
    """
    Return the `[start, end)` naive UTC bounds of the calendar day containing `dt`.

    Overdue and digest deduplication compare record timestamps against these bounds.
    """
    start = to_naive_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def format_due_date(dt: Optional[datetime]) -> str:
    """Human readable due date used in email templates."""
    if dt is None:
        return "No due date"
    return to_naive_utc(dt).strftime("%b %d, %Y %H:%M UTC")


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
