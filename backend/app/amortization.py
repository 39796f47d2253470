"""Declining-balance amortization of installment credits.

Interest for a month is the outstanding balance times ``rate / 100 / 12``,
rounded to the cent.  The rest of the installment repays principal, so every
balance in a schedule is an exact amount of cents and the final installment
brings it to zero.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from app.dates import add_months, months_between, set_day_of_month
from app.exceptions import NonConvergentAmortizationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Hard cap on the number of monthly steps a single schedule may take.
MAX_AMORTIZATION_MONTHS = int(os.getenv("MAX_AMORTIZATION_MONTHS", "600"))


@dataclass
class ScheduledPayment:
    """One installment of a credit schedule."""

    amount: Decimal
    principal: Decimal
    interest: Decimal
    remaining_balance: Decimal
    payment_date: datetime
    is_paid: bool


@dataclass
class AmortizationResult:
    remaining_balance: Decimal
    schedule: list[ScheduledPayment] = field(default_factory=list)


def to_cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate_percent) -> Decimal:
    return Decimal(str(annual_rate_percent)) / Decimal(100) / Decimal(12)


def payment_dates(start_date: datetime, payment_day: int):
    """Yield installment dates: the start month pinned to ``payment_day``,
    then one per following month with the day re-pinned each time."""
    k = 0
    while True:
        yield set_day_of_month(add_months(start_date, k), payment_day)
        k += 1


def _split(balance: Decimal, payment: Decimal, rate: Decimal):
    interest = to_cents(balance * rate)
    if payment <= interest:
        raise NonConvergentAmortizationError(
            f"Installment {payment} does not cover interest {interest} "
            f"on a balance of {balance}"
        )
    principal = min(payment - interest, balance)
    return principal, interest


def amortize(
    total_amount,
    monthly_payment,
    annual_rate_percent,
    start_date: datetime,
    end_date: datetime,
    payment_day: int,
    as_of: datetime,
) -> AmortizationResult:
    """Build the full payment schedule of a credit.

    Installments run monthly from ``start_date`` until the balance is paid
    off or ``end_date`` is passed.  Entries dated before ``as_of`` are
    flagged as already paid.
    """
    balance = to_cents(total_amount)
    payment = to_cents(monthly_payment)
    rate = monthly_rate(annual_rate_percent)

    schedule = []
    for current in payment_dates(start_date, payment_day):
        if balance <= ZERO or current > end_date:
            break
        if len(schedule) >= MAX_AMORTIZATION_MONTHS:
            raise NonConvergentAmortizationError(
                f"Schedule exceeds {MAX_AMORTIZATION_MONTHS} months"
            )
        principal, interest = _split(balance, payment, rate)
        balance = max(balance - principal, ZERO)
        schedule.append(
            ScheduledPayment(
                amount=payment,
                principal=principal,
                interest=interest,
                remaining_balance=balance,
                payment_date=current,
                is_paid=current < as_of,
            )
        )
    return AmortizationResult(remaining_balance=balance, schedule=schedule)


def remaining_balance_as_of(
    total_amount,
    monthly_payment,
    annual_rate_percent,
    start_date: datetime,
    payment_day: int,
    as_of: datetime,
    end_date: datetime | None = None,
) -> Decimal:
    """Outstanding principal after every installment dated before ``as_of``."""
    balance = to_cents(total_amount)
    payment = to_cents(monthly_payment)
    rate = monthly_rate(annual_rate_percent)

    limit = min(months_between(start_date, as_of) + 1, MAX_AMORTIZATION_MONTHS)
    for step, current in enumerate(payment_dates(start_date, payment_day)):
        if balance <= ZERO or current >= as_of:
            break
        if end_date is not None and current > end_date:
            break
        if step >= limit:
            raise NonConvergentAmortizationError(
                f"Schedule exceeds {limit} months"
            )
        principal, _ = _split(balance, payment, rate)
        balance = max(balance - principal, ZERO)
    return balance
