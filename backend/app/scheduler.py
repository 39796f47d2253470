"""Periodic settlement of subscriptions, credit installments and recurring
transactions.

One run scans for everything due at ``now`` and then settles each item in
its own database transaction, so a failing item is logged and retried on
the next run without affecting the others.  Being due is a threshold check
on stored dates, which makes repeated runs safe.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from app import crud
from app.database import async_session, run_atomic
from app.models import (
    Credit,
    CreditPayment,
    RecurringFrequency,
    Subscription,
    Transaction,
)
from app.recurrence import next_occurrence

logger = logging.getLogger(__name__)

SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "3600"))

# Frequencies whose occurrences are pinned to a day of month.
DAY_PINNED = {
    RecurringFrequency.MONTHLY,
    RecurringFrequency.QUARTERLY,
    RecurringFrequency.YEARLY,
}

_run_lock = asyncio.Lock()


@dataclass
class DueItems:
    subscriptions: list[Subscription] = field(default_factory=list)
    credit_payments: list[CreditPayment] = field(default_factory=list)
    recurring_parents: list[Transaction] = field(default_factory=list)


@dataclass
class ProcessReport:
    settled: int = 0
    failed: int = 0
    skipped: bool = False


def next_recurring_date(parent: Transaction, last: datetime) -> datetime:
    """Next occurrence of a recurring transaction after ``last``.

    Monthly and longer schedules keep the template's day of month.
    """
    target_day = parent.date.day if parent.recurring_frequency in DAY_PINNED else None
    return next_occurrence(last, parent.recurring_frequency, target_day)


async def find_due(session: AsyncSession, now: datetime) -> DueItems:
    """Collect every obligation due at or before ``now``. Read only."""
    result = await session.execute(
        select(Subscription)
        .where(
            Subscription.is_active == True,  # noqa: E712
            Subscription.next_payment_date <= now,
        )
        .order_by(Subscription.next_payment_date, Subscription.id)
    )
    subscriptions = list(result.scalars().all())

    result = await session.execute(
        select(CreditPayment)
        .where(
            CreditPayment.is_paid == False,  # noqa: E712
            CreditPayment.payment_date <= now,
        )
        .order_by(CreditPayment.payment_date, CreditPayment.id)
    )
    credit_payments = list(result.scalars().all())

    result = await session.execute(
        select(Transaction)
        .where(
            Transaction.is_recurring == True,  # noqa: E712
            Transaction.recurring_frequency != None,  # noqa: E711
            Transaction.parent_transaction_id == None,  # noqa: E711
            or_(
                Transaction.recurring_end_date == None,  # noqa: E711
                Transaction.recurring_end_date >= now,
            ),
        )
        .order_by(Transaction.id)
    )
    recurring_parents = []
    for parent in result.scalars().all():
        last = await crud.get_last_occurrence_date(session, parent)
        if next_recurring_date(parent, last) <= now:
            recurring_parents.append(parent)

    return DueItems(subscriptions, credit_payments, recurring_parents)


async def settle_subscription(
    session_factory: async_sessionmaker, subscription_id: int, now: datetime
) -> int:
    """Charge every missed period of a subscription. Returns the charge count."""

    async def settle(session: AsyncSession) -> int:
        subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            return 0
        charges = 0
        while subscription.is_active and subscription.next_payment_date <= now:
            await crud.charge_subscription(
                session, subscription, subscription.next_payment_date
            )
            charges += 1
        return charges

    return await run_atomic(session_factory, settle)


async def settle_credit_payment(
    session_factory: async_sessionmaker, payment_id: int, now: datetime
) -> int:
    """Pay a due credit installment. Returns 1 if it was booked, else 0."""

    async def settle(session: AsyncSession) -> int:
        payment = await session.get(CreditPayment, payment_id)
        if payment is None or payment.is_paid or payment.payment_date > now:
            return 0
        credit = await session.get(Credit, payment.credit_id)
        await crud.book_credit_installment(session, credit, payment)
        return 1

    return await run_atomic(session_factory, settle)


async def settle_recurring_transaction(
    session_factory: async_sessionmaker, parent_id: int, now: datetime
) -> int:
    """Generate the missing occurrences of a recurring transaction."""

    async def settle(session: AsyncSession) -> int:
        parent = await session.get(Transaction, parent_id)
        if parent is None or not parent.is_recurring or not parent.recurring_frequency:
            return 0
        last = await crud.get_last_occurrence_date(session, parent)
        delta = crud.balance_change(parent.type, parent.amount)
        created = 0
        while True:
            occurs_at = next_recurring_date(parent, last)
            if occurs_at > now:
                break
            if parent.recurring_end_date and occurs_at > parent.recurring_end_date:
                break
            await crud.add_transaction(
                session,
                Transaction(
                    account_id=parent.account_id,
                    category_id=parent.category_id,
                    amount=parent.amount,
                    type=parent.type,
                    description=parent.description,
                    date=occurs_at,
                    parent_transaction_id=parent.id,
                    tags=list(parent.tags or []),
                ),
            )
            await crud.adjust_balance(session, parent.account_id, delta)
            last = occurs_at
            created += 1
        return created

    return await run_atomic(session_factory, settle)


async def _settle_each(report, kind, items, settle, session_factory, now):
    for item_id, label in items:
        try:
            count = await settle(session_factory, item_id, now)
        except Exception:
            report.failed += 1
            logger.exception("Failed to settle %s %s (%s)", kind, item_id, label)
            continue
        if count:
            report.settled += 1
            logger.info("Settled %s %s (%s), %d occurrence(s)", kind, item_id, label, count)


async def process_due(
    session_factory: async_sessionmaker | None = None,
    now: datetime | None = None,
) -> ProcessReport:
    """Settle everything due at ``now``.

    Only one run may be active at a time; an overlapping call returns at
    once with ``skipped`` set.  Errors while scanning propagate, errors
    while settling a single item are logged and counted.
    """
    if _run_lock.locked():
        logger.warning("Previous scheduler run still in progress, skipping")
        return ProcessReport(skipped=True)

    async with _run_lock:
        session_factory = session_factory or async_session
        now = now or datetime.utcnow()
        logger.info("Processing obligations due by %s", now.isoformat())

        async with session_factory() as session:
            due = await find_due(session, now)
        logger.info(
            "Found %d subscription(s), %d credit payment(s), %d recurring transaction(s) due",
            len(due.subscriptions),
            len(due.credit_payments),
            len(due.recurring_parents),
        )

        report = ProcessReport()
        await _settle_each(
            report,
            "subscription",
            [(s.id, s.name) for s in due.subscriptions],
            settle_subscription,
            session_factory,
            now,
        )
        await _settle_each(
            report,
            "credit payment",
            [(p.id, f"credit {p.credit_id}") for p in due.credit_payments],
            settle_credit_payment,
            session_factory,
            now,
        )
        await _settle_each(
            report,
            "recurring transaction",
            [(t.id, t.description) for t in due.recurring_parents],
            settle_recurring_transaction,
            session_factory,
            now,
        )
        logger.info(
            "Finished processing: %d settled, %d failed", report.settled, report.failed
        )
        return report


async def run_periodically(
    session_factory: async_sessionmaker | None = None,
    interval_seconds: int = SCHEDULER_INTERVAL_SECONDS,
) -> None:
    """Background coroutine calling :func:`process_due` every interval."""

    logger.info("Starting scheduler, interval %s seconds", interval_seconds)
    while True:
        try:
            await process_due(session_factory)
        except Exception as exc:
            logger.exception("Scheduled run failed: %s", exc)
        await asyncio.sleep(interval_seconds)
