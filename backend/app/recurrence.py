"""Next-occurrence rules for subscriptions and recurring transactions."""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from app.dates import (
    add_days,
    add_months,
    add_years,
    clamp_day_of_month,
    set_day_of_month,
)
from app.exceptions import InvalidFrequencyError
from app.models import RecurringFrequency

CENT = Decimal("0.01")

# Rough number of occurrences per month, used for budget summaries only.
MONTHLY_FACTORS = {
    RecurringFrequency.DAILY: Decimal("30"),
    RecurringFrequency.WEEKLY: Decimal("4.33"),
    RecurringFrequency.BIWEEKLY: Decimal("2.17"),
    RecurringFrequency.MONTHLY: Decimal("1"),
    RecurringFrequency.QUARTERLY: Decimal("1") / Decimal("3"),
    RecurringFrequency.YEARLY: Decimal("1") / Decimal("12"),
}


def parse_frequency(value) -> RecurringFrequency:
    """Coerce an enum member or its string value into ``RecurringFrequency``."""
    if isinstance(value, RecurringFrequency):
        return value
    try:
        return RecurringFrequency(str(value).upper())
    except ValueError:
        raise InvalidFrequencyError(f"Unknown frequency: {value!r}") from None


def next_occurrence(
    current: datetime,
    frequency: RecurringFrequency | str | None,
    target_day: int | None = None,
) -> datetime:
    """Return the occurrence that follows ``current``.

    For monthly, quarterly and yearly schedules ``target_day`` pins the
    result to that day of month, clamped to the month's length.  Anything
    that is not a known frequency is treated as monthly.
    """
    if frequency == RecurringFrequency.DAILY:
        return add_days(current, 1)
    if frequency == RecurringFrequency.WEEKLY:
        return add_days(current, 7)
    if frequency == RecurringFrequency.BIWEEKLY:
        return add_days(current, 14)

    if frequency == RecurringFrequency.QUARTERLY:
        next_dt = add_months(current, 3)
    elif frequency == RecurringFrequency.YEARLY:
        next_dt = add_years(current, 1)
    else:
        next_dt = add_months(current, 1)

    if target_day:
        next_dt = set_day_of_month(next_dt, target_day)
    return next_dt


def first_occurrence_from_day(target_day: int, now: datetime) -> datetime:
    """First date on or after today that falls on ``target_day``.

    The time is fixed at noon so the date does not shift across timezones.
    """
    year, month = now.year, now.month
    if now.day > target_day:
        month += 1
        if month > 12:
            month = 1
            year += 1
    day = clamp_day_of_month(year, month, target_day)
    return datetime(year, month, day, 12, 0, 0)


def monthly_equivalent(
    amount: Decimal, frequency: RecurringFrequency | str
) -> Decimal:
    """Approximate monthly cost of a recurring amount."""
    try:
        factor = MONTHLY_FACTORS[parse_frequency(frequency)]
    except InvalidFrequencyError:
        factor = Decimal("1")
    return (Decimal(amount) * factor).quantize(CENT, rounding=ROUND_HALF_UP)
