"""Calendar helpers shared by the schedulers.

Month and year arithmetic goes through ``relativedelta`` so an overflowing
day is clamped to the end of the target month (Jan 31 + 1 month is the last
day of February).  Code that needs a fixed day of month re-applies it with
:func:`set_day_of_month`.
"""

import calendar
import math
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def add_months(dt: datetime, months: int) -> datetime:
    return dt + relativedelta(months=months)


def add_years(dt: datetime, years: int) -> datetime:
    return dt + relativedelta(years=years)


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day_of_month(year: int, month: int, desired_day: int) -> int:
    """Return ``desired_day`` or the month's last day, whichever is smaller."""
    return min(desired_day, last_day_of_month(year, month))


def set_day_of_month(dt: datetime, day: int) -> datetime:
    """Move ``dt`` to ``day`` within its own month, keeping the time of day."""
    return dt.replace(day=clamp_day_of_month(dt.year, dt.month, day))


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from today to ``target``; negative when overdue."""
    diff = start_of_day(target) - start_of_day(now)
    return math.ceil(diff / timedelta(days=1))


def is_overdue(target: datetime, now: datetime) -> bool:
    return days_until(target, now) < 0


def months_between(start: datetime, end: datetime) -> int:
    """Number of calendar month boundaries between ``start`` and ``end``."""
    return (end.year - start.year) * 12 + (end.month - start.month)
