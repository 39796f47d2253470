"""Asynchronous CRUD helpers for the application's data models.

Each function in this module encapsulates a specific database operation
using SQLModel and SQLAlchemy.  Helpers that only ``add``/``flush`` can be
composed inside a larger unit of work (see ``run_atomic``); the
``create_*``/``save_*`` helpers commit on their own.

Account balances are never written with read-modify-write: every change
goes through :func:`adjust_balance`, which issues a single
``UPDATE ... SET balance = balance + :delta``.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.amortization import amortize, remaining_balance_as_of, to_cents
from app.dates import days_until
from app.models import (
    Account,
    Credit,
    CreditPayment,
    Subscription,
    Transaction,
    TransactionType,
)
from app.recurrence import (
    first_occurrence_from_day,
    monthly_equivalent,
    next_occurrence,
)
from app.schemas import (
    CreditCreate,
    CreditPaymentRecord,
    CreditUpdate,
    SubscriptionCreate,
    SubscriptionUpdate,
    TransactionCreate,
)

# Fields whose change invalidates a credit's computed remaining amount.
AMORTIZATION_FIELDS = (
    "total_amount",
    "monthly_payment",
    "interest_rate",
    "start_date",
    "payment_day",
)


# --- Account helpers ----------------------------------------------------


async def get_account(db: AsyncSession, account_id: int) -> Account | None:
    result = await db.execute(select(Account).where(Account.id == account_id))
    return result.scalar_one_or_none()


async def get_account_for_user(
    db: AsyncSession, account_id: int, user_id: int
) -> Account:
    """Load an account owned by ``user_id`` or raise ``ValueError``."""
    account = await get_account(db, account_id)
    if not account or account.user_id != user_id:
        raise ValueError("Account not found")
    return account


async def adjust_balance(
    db: AsyncSession, account_id: int, delta: Decimal
) -> None:
    """Atomically add ``delta`` (possibly negative) to an account balance.

    Account objects already loaded in the session are not updated; refresh
    them to see the new balance.
    """
    result = await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=Account.balance + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValueError("Account not found")


def balance_change(tx_type: TransactionType, amount: Decimal) -> Decimal:
    """Signed effect of a transaction on its account balance.

    Income credits the account; expenses and outgoing transfers debit it.
    """
    if tx_type == TransactionType.INCOME:
        return amount
    return -amount


# --- Transaction helpers ------------------------------------------------


async def add_transaction(db: AsyncSession, tx: Transaction) -> Transaction:
    """Stage a transaction in the current unit of work."""
    db.add(tx)
    await db.flush()
    return tx


async def create_transaction(
    db: AsyncSession, data: TransactionCreate
) -> Transaction:
    """Record a transaction and apply it to the account balance."""
    tx = Transaction(**data.model_dump())
    await add_transaction(db, tx)
    await adjust_balance(db, tx.account_id, balance_change(tx.type, tx.amount))
    await db.commit()
    await db.refresh(tx)
    return tx


async def get_transactions_by_account(
    db: AsyncSession, account_id: int
) -> list[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .order_by(Transaction.date, Transaction.id)
    )
    return result.scalars().all()


async def get_child_transactions(
    db: AsyncSession, parent_id: int
) -> list[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.parent_transaction_id == parent_id)
        .order_by(Transaction.date)
    )
    return result.scalars().all()


async def get_last_occurrence_date(
    db: AsyncSession, parent: Transaction
) -> datetime:
    """Date of the newest generated occurrence, or the template's own date."""
    result = await db.execute(
        select(func.max(Transaction.date)).where(
            Transaction.parent_transaction_id == parent.id
        )
    )
    return result.scalar_one_or_none() or parent.date


# --- Subscription helpers -----------------------------------------------


async def create_subscription(
    db: AsyncSession,
    user_id: int,
    data: SubscriptionCreate,
    now: datetime | None = None,
) -> Subscription:
    """Store a subscription, scheduling its first charge from ``payment_day``."""
    now = now or datetime.utcnow()
    await get_account_for_user(db, data.account_id, user_id)
    sub = Subscription(
        **data.model_dump(),
        user_id=user_id,
        next_payment_date=first_occurrence_from_day(data.payment_day, now),
    )
    db.add(sub)
    await db.commit()
    await db.refresh(sub)
    return sub


async def update_subscription(
    db: AsyncSession,
    subscription: Subscription,
    data: SubscriptionUpdate,
    now: datetime | None = None,
) -> Subscription:
    """Apply changes; a new ``payment_day`` reschedules the next charge."""
    changes = data.model_dump(exclude_unset=True)
    if "account_id" in changes:
        await get_account_for_user(db, changes["account_id"], subscription.user_id)
    for field, value in changes.items():
        setattr(subscription, field, value)
    if changes.get("payment_day"):
        subscription.next_payment_date = first_occurrence_from_day(
            subscription.payment_day, now or datetime.utcnow()
        )
    return await save_subscription(db, subscription)


async def save_subscription(
    db: AsyncSession, subscription: Subscription
) -> Subscription:
    db.add(subscription)
    await db.commit()
    await db.refresh(subscription)
    return subscription


async def delete_subscription(db: AsyncSession, subscription: Subscription) -> None:
    await db.delete(subscription)
    await db.commit()


async def charge_subscription(
    db: AsyncSession,
    subscription: Subscription,
    charged_at: datetime,
    is_recurring: bool = True,
) -> Transaction:
    """Book one charge of a subscription and move it to its next date.

    Scheduled charges are flagged ``is_recurring``; manual ones are not.
    Only stages the changes; the caller owns the commit.
    """
    tx = await add_transaction(
        db,
        Transaction(
            account_id=subscription.account_id,
            category_id=subscription.category_id,
            amount=subscription.amount,
            type=TransactionType.EXPENSE,
            description=f"Subscription: {subscription.name}",
            date=charged_at,
            is_recurring=is_recurring,
        ),
    )
    await adjust_balance(db, subscription.account_id, -subscription.amount)
    subscription.next_payment_date = next_occurrence(
        subscription.next_payment_date,
        subscription.frequency,
        subscription.payment_day,
    )
    db.add(subscription)
    await db.flush()
    return tx


async def pay_subscription_now(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> Subscription:
    """Settle the upcoming charge immediately, whether or not it is due."""
    await charge_subscription(
        db, subscription, now or datetime.utcnow(), is_recurring=False
    )
    await db.commit()
    await db.refresh(subscription)
    return subscription


async def get_upcoming_subscriptions(
    db: AsyncSession, user_id: int, now: datetime, days: int = 30
) -> list[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.is_active == True,  # noqa: E712
            Subscription.next_payment_date <= now + timedelta(days=days),
        )
        .order_by(Subscription.next_payment_date)
    )
    return result.scalars().all()


async def get_total_monthly_subscriptions(db: AsyncSession, user_id: int) -> Decimal:
    """Sum of active subscriptions, each normalised to a monthly amount."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.is_active == True,  # noqa: E712
        )
    )
    return sum(
        (monthly_equivalent(s.amount, s.frequency) for s in result.scalars().all()),
        Decimal("0.00"),
    )


# --- Credit helpers -----------------------------------------------------


def _schedule_rows(credit: Credit, as_of: datetime) -> list[CreditPayment]:
    result = amortize(
        credit.total_amount,
        credit.monthly_payment,
        credit.interest_rate,
        credit.start_date,
        credit.end_date,
        credit.payment_day,
        as_of,
    )
    return [
        CreditPayment(
            credit_id=credit.id,
            amount=entry.amount,
            principal=entry.principal,
            interest=entry.interest,
            remaining_balance=entry.remaining_balance,
            payment_date=entry.payment_date,
            is_paid=entry.is_paid,
        )
        for entry in result.schedule
    ]


async def create_credit(
    db: AsyncSession,
    user_id: int,
    data: CreditCreate,
    now: datetime | None = None,
) -> Credit:
    """Store a credit together with its full payment schedule.

    When the credit started in the past and no remaining amount is given,
    the principal repaid so far is simulated.  Installments dated before
    ``now`` are stored as paid; no transaction is booked for them and the
    account balance is left untouched.
    """
    now = now or datetime.utcnow()
    await get_account_for_user(db, data.account_id, user_id)

    remaining = data.remaining_amount
    if remaining is None:
        remaining = to_cents(data.total_amount)
        if data.start_date < now:
            remaining = remaining_balance_as_of(
                data.total_amount,
                data.monthly_payment,
                data.interest_rate,
                data.start_date,
                data.payment_day,
                now,
                end_date=data.end_date,
            )

    credit = Credit(
        **data.model_dump(exclude={"remaining_amount"}),
        user_id=user_id,
        remaining_amount=remaining,
    )
    db.add(credit)
    await db.flush()  # ensure credit.id is populated
    for payment in _schedule_rows(credit, now):
        db.add(payment)
    await db.commit()
    await db.refresh(credit)
    return credit


async def get_credit(db: AsyncSession, credit_id: int) -> Credit | None:
    result = await db.execute(select(Credit).where(Credit.id == credit_id))
    return result.scalar_one_or_none()


async def get_credit_payments(
    db: AsyncSession, credit_id: int
) -> list[CreditPayment]:
    result = await db.execute(
        select(CreditPayment)
        .where(CreditPayment.credit_id == credit_id)
        .order_by(CreditPayment.payment_date)
    )
    return result.scalars().all()


async def update_credit(
    db: AsyncSession,
    credit: Credit,
    data: CreditUpdate,
    now: datetime | None = None,
) -> Credit:
    """Apply changes and recompute the remaining amount when terms change."""
    changes = data.model_dump(exclude_unset=True)
    if "account_id" in changes:
        await get_account_for_user(db, changes["account_id"], credit.user_id)
    for field, value in changes.items():
        setattr(credit, field, value)
    if any(field in changes for field in AMORTIZATION_FIELDS):
        credit.remaining_amount = remaining_balance_as_of(
            credit.total_amount,
            credit.monthly_payment,
            credit.interest_rate,
            credit.start_date,
            credit.payment_day,
            now or datetime.utcnow(),
            end_date=credit.end_date,
        )
    db.add(credit)
    await db.commit()
    await db.refresh(credit)
    return credit


async def delete_credit(db: AsyncSession, credit: Credit) -> None:
    """Remove a credit; its schedule goes with it through the cascade."""
    await db.delete(credit)
    await db.commit()


async def reduce_remaining_amount(
    db: AsyncSession, credit_id: int, principal: Decimal
) -> None:
    """Atomically decrement a credit's outstanding principal, never below 0."""
    new_amount = Credit.remaining_amount - principal
    await db.execute(
        update(Credit)
        .where(Credit.id == credit_id)
        .values(remaining_amount=case((new_amount < 0, 0), else_=new_amount))
        .execution_options(synchronize_session=False)
    )


async def book_credit_installment(
    db: AsyncSession, credit: Credit, payment: CreditPayment
) -> Transaction:
    """Mark an installment paid and charge it to the credit's account.

    Only stages the changes; the caller owns the commit.
    """
    payment.is_paid = True
    db.add(payment)
    await reduce_remaining_amount(db, credit.id, payment.principal)
    tx = await add_transaction(
        db,
        Transaction(
            account_id=credit.account_id,
            amount=payment.amount,
            type=TransactionType.EXPENSE,
            description=f"Credit installment: {credit.name}",
            date=payment.payment_date,
        ),
    )
    await adjust_balance(db, credit.account_id, -payment.amount)
    return tx


async def record_credit_payment(
    db: AsyncSession, credit: Credit, data: CreditPaymentRecord
) -> CreditPayment:
    """Record a payment made outside the schedule."""
    payment = CreditPayment(
        credit_id=credit.id,
        amount=data.amount,
        principal=data.principal,
        interest=data.interest,
        remaining_balance=max(credit.remaining_amount - data.principal, Decimal("0")),
        payment_date=data.payment_date,
        is_paid=False,
    )
    db.add(payment)
    await db.flush()
    await book_credit_installment(db, credit, payment)
    await db.commit()
    await db.refresh(payment)
    await db.refresh(credit)
    return payment


async def get_upcoming_credit_payments(
    db: AsyncSession, user_id: int, now: datetime, days: int = 30
) -> list[dict]:
    """Unpaid installments due within ``days``, soonest first."""
    result = await db.execute(
        select(CreditPayment, Credit)
        .join(Credit, CreditPayment.credit_id == Credit.id)
        .where(
            Credit.user_id == user_id,
            CreditPayment.is_paid == False,  # noqa: E712
            CreditPayment.payment_date <= now + timedelta(days=days),
        )
        .order_by(CreditPayment.payment_date)
    )
    return [
        {
            "payment": payment,
            "credit_name": credit.name,
            "credit_type": credit.type,
            "days_until": days_until(payment.payment_date, now),
        }
        for payment, credit in result.all()
    ]


async def get_total_remaining_debt(db: AsyncSession, user_id: int) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Credit.remaining_amount), 0)).where(
            Credit.user_id == user_id
        )
    )
    return to_cents(result.scalar_one())
