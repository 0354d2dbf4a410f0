"""Date helpers.

All timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, time, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(dt: datetime) -> datetime:
    """Strip the time component."""
    return datetime.combine(dt.date(), time.min)


def end_of_day(dt: datetime) -> datetime:
    """Move to the last microsecond of the day."""
    return datetime.combine(dt.date(), time.max)


def format_date(dt: datetime | None) -> str:
    """Format as yyyy-mm-dd for user-facing messages."""
    if dt is None:
        return "N/A"
    return dt.strftime("%Y-%m-%d")
