"""
Date and time utilities for catering schedules.

Arrival timestamps and grace periods are naive local times of the
catering's timezone; audit timestamps are naive UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    """Get the current naive UTC time."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_local_now(tz_name: str) -> datetime:
    """
    Get the current naive local time of a timezone.

    Args:
        tz_name: IANA timezone name (e.g. "Europe/Warsaw")

    Returns:
        Naive datetime in the given timezone
    """
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def subtract_time_of_day(moment: datetime, offset: time) -> datetime:
    """Shift a datetime back by a time-of-day interpreted as a duration."""
    return moment - timedelta(
        hours=offset.hour,
        minutes=offset.minute,
        seconds=offset.second,
        microseconds=offset.microsecond,
    )


def expand_two_digit_year(year: int, reference_year: int) -> int:
    """
    Expand a 2-digit year within the century of the reference year.

    Args:
        year: Year between 0 and 99
        reference_year: Full year the message arrived in

    Returns:
        Full year (e.g. 25 with reference 2025 -> 2025)
    """
    return (reference_year // 100) * 100 + year


def next_occurrence(day: int, month: int, reference: date) -> Optional[date]:
    """
    Resolve a year-less day/month to its next occurrence on or after reference.

    The date is taken in the reference year and rolled forward one year only
    when it is strictly before the reference date.

    Returns:
        The resolved date, or None if day/month is not a valid date in the
        year it resolves to
    """
    try:
        candidate = date(reference.year, month, day)
        if candidate < reference:
            candidate = date(reference.year + 1, month, day)
    except ValueError:
        return None
    return candidate


def iter_days(since: date, until: date) -> Iterator[date]:
    """Iterate over every day in the inclusive range."""
    day = since
    while day <= until:
        yield day
        day += timedelta(days=1)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """
    Get the first day of a month and the first day of the following month.

    Raises:
        ValueError: If year/month do not name a valid month
    """
    start = date(year, month, 1)
    return start, start + relativedelta(months=1)
