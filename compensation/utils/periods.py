# compensation/utils/periods.py
"""
Cap window boundaries.

day   - 00:00 UTC
week  - Monday 00:00 UTC
month - 1st of month 00:00 UTC
"""
from datetime import datetime, timedelta, timezone

from compensation.types import Period


def as_utc(dt: datetime) -> datetime:
    """Normalize a timestamp to aware UTC (SQLite hands back naive values)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def period_start(period: Period, at: datetime) -> datetime:
    """Start of the window of the given granularity that contains `at`."""
    at = as_utc(at)
    day = at.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == Period.DAY:
        return day
    if period == Period.WEEK:
        return day - timedelta(days=day.weekday())
    if period == Period.MONTH:
        return day.replace(day=1)

    raise ValueError(f"Unknown period: {period}")


def is_boundary_crossed(period: Period, started_at: datetime, at: datetime) -> bool:
    """True when `at` lies in a later window than the one started at `started_at`."""
    return period_start(period, at) > as_utc(started_at)
