"""Tests for creation-time calculations in the store layer."""

import asyncio
import pathlib
import sys
from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from app.crud import (
    create_credit,
    create_subscription,
    create_transaction,
    delete_credit,
    delete_subscription,
    get_credit,
    get_credit_payments,
    get_total_monthly_subscriptions,
    get_total_remaining_debt,
    get_transactions_by_account,
    get_upcoming_credit_payments,
    get_upcoming_subscriptions,
    pay_subscription_now,
    record_credit_payment,
    update_credit,
    update_subscription,
)
from app.exceptions import NonConvergentAmortizationError
from app.models import (
    Account,
    RecurringFrequency,
    Subscription,
    TransactionType,
    User,
)
from app.schemas import (
    CreditCreate,
    CreditPaymentRecord,
    CreditUpdate,
    SubscriptionCreate,
    SubscriptionUpdate,
    TransactionCreate,
)


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async with TestSession() as session:
        owner = User(name="Alice", email="alice@example.com")
        other = User(name="Bob", email="bob@example.com")
        session.add(owner)
        session.add(other)
        await session.commit()
        await session.refresh(owner)
        await session.refresh(other)
        account = Account(user_id=owner.id, name="Checking", balance=Decimal("1000"))
        session.add(account)
        await session.commit()
        await session.refresh(account)

    return TestSession, owner, other, account


def _credit_data(account_id, **overrides):
    data = dict(
        account_id=account_id,
        name="Mortgage",
        total_amount=Decimal("200000"),
        monthly_payment=Decimal("1200"),
        interest_rate=Decimal("2.5"),
        start_date=datetime(2024, 1, 10, 12),
        end_date=datetime(2044, 1, 10, 12),
        payment_day=10,
    )
    data.update(overrides)
    return CreditCreate(**data)


def test_subscription_first_payment_from_payment_day():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        async with TestSession() as session:
            sub = await create_subscription(
                session,
                owner.id,
                SubscriptionCreate(
                    account_id=account.id,
                    name="Phone",
                    amount=Decimal("19.99"),
                    frequency=RecurringFrequency.MONTHLY,
                    payment_day=15,
                ),
                now=datetime(2024, 1, 20, 18),
            )
            assert sub.next_payment_date == datetime(2024, 2, 15, 12)

            sub = await update_subscription(
                session,
                sub,
                SubscriptionUpdate(payment_day=31),
                now=datetime(2024, 4, 3),
            )
            assert sub.next_payment_date == datetime(2024, 4, 30, 12)

            sub = await update_subscription(
                session, sub, SubscriptionUpdate(name="Mobile")
            )
            assert sub.name == "Mobile"
            assert sub.next_payment_date == datetime(2024, 4, 30, 12)

    asyncio.run(run())


def test_subscription_requires_owned_account():
    async def run():
        TestSession, _, other, account = await _setup_test_db()
        async with TestSession() as session:
            with pytest.raises(ValueError, match="Account not found"):
                await create_subscription(
                    session,
                    other.id,
                    SubscriptionCreate(
                        account_id=account.id,
                        name="Phone",
                        amount=Decimal("19.99"),
                        payment_day=15,
                    ),
                )

    asyncio.run(run())


def test_subscription_schema_rejects_bad_payment_day():
    with pytest.raises(ValidationError):
        SubscriptionCreate(account_id=1, name="X", amount=Decimal("1"), payment_day=32)
    with pytest.raises(ValidationError):
        SubscriptionCreate(account_id=1, name="X", amount=Decimal("0"), payment_day=3)


def test_pay_subscription_now_and_totals():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        now = datetime(2024, 6, 1, 9)
        async with TestSession() as session:
            monthly = await create_subscription(
                session,
                owner.id,
                SubscriptionCreate(
                    account_id=account.id, name="Video", amount=Decimal("10.00"),
                    payment_day=10,
                ),
                now=now,
            )
            await create_subscription(
                session,
                owner.id,
                SubscriptionCreate(
                    account_id=account.id, name="Domain", amount=Decimal("120.00"),
                    frequency=RecurringFrequency.YEARLY, payment_day=20,
                ),
                now=now,
            )
            assert await get_total_monthly_subscriptions(session, owner.id) == Decimal("20.00")

            upcoming = await get_upcoming_subscriptions(session, owner.id, now, days=15)
            assert [s.name for s in upcoming] == ["Video"]

            monthly = await pay_subscription_now(session, monthly, now=now)
            assert monthly.next_payment_date == datetime(2024, 7, 10, 12)
            account = await session.get(Account, account.id, populate_existing=True)
            assert account.balance == Decimal("990.00")
            txs = await get_transactions_by_account(session, account.id)
            assert len(txs) == 1
            assert txs[0].type == TransactionType.EXPENSE
            assert txs[0].is_recurring is False

    asyncio.run(run())


def test_create_credit_infers_remaining_amount():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        now = datetime(2026, 1, 10, 12)
        async with TestSession() as session:
            credit = await create_credit(session, owner.id, _credit_data(account.id), now=now)
            payments = await get_credit_payments(session, credit.id)
            paid = [p for p in payments if p.is_paid]

            assert len(paid) == 24
            assert credit.remaining_amount == Decimal("200000.00") - sum(
                p.principal for p in paid
            )
            assert credit.remaining_amount != Decimal("200000") - 24 * Decimal("1200")
            assert payments[0].payment_date == datetime(2024, 1, 10, 12)
            assert payments[-1].remaining_balance == Decimal("0.00")
            account = await session.get(Account, account.id, populate_existing=True)
            assert account.balance == Decimal("1000.00")
            assert await get_transactions_by_account(session, account.id) == []

    asyncio.run(run())


def test_create_credit_keeps_given_remaining_amount():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        async with TestSession() as session:
            credit = await create_credit(
                session,
                owner.id,
                _credit_data(account.id, remaining_amount=Decimal("150000")),
                now=datetime(2026, 1, 10, 12),
            )
            assert credit.remaining_amount == Decimal("150000.00")

            future = await create_credit(
                session,
                owner.id,
                _credit_data(account.id, name="Future", start_date=datetime(2027, 1, 10)),
                now=datetime(2026, 1, 10, 12),
            )
            assert future.remaining_amount == Decimal("200000.00")
            assert not any(p.is_paid for p in await get_credit_payments(session, future.id))

            assert await get_total_remaining_debt(session, owner.id) == Decimal("350000.00")

    asyncio.run(run())


def test_create_credit_rejects_non_convergent_terms():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        async with TestSession() as session:
            with pytest.raises(NonConvergentAmortizationError):
                await create_credit(
                    session,
                    owner.id,
                    _credit_data(account.id, monthly_payment=Decimal("300")),
                    now=datetime(2024, 1, 1),
                )

    asyncio.run(run())


def test_credit_schema_rejects_inverted_dates():
    with pytest.raises(ValidationError):
        _credit_data(1, end_date=datetime(2020, 1, 1))
    with pytest.raises(ValidationError):
        _credit_data(1, remaining_amount=Decimal("300000"))


def test_update_credit_recalculates_remaining_amount():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        now = datetime(2026, 1, 10, 12)
        async with TestSession() as session:
            credit = await create_credit(
                session,
                owner.id,
                _credit_data(account.id, remaining_amount=Decimal("199000")),
                now=now,
            )
            credit = await update_credit(session, credit, CreditUpdate(notes="fixed"), now=now)
            assert credit.remaining_amount == Decimal("199000.00")

            credit = await update_credit(
                session, credit, CreditUpdate(monthly_payment=Decimal("2000")), now=now
            )
            assert credit.remaining_amount < Decimal("200000") - 24 * Decimal("1200")

    asyncio.run(run())


def test_record_credit_payment_and_upcoming():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        now = datetime(2024, 1, 5)
        async with TestSession() as session:
            credit = await create_credit(
                session,
                owner.id,
                _credit_data(
                    account.id,
                    total_amount=Decimal("1200"),
                    monthly_payment=Decimal("100"),
                    interest_rate=Decimal("0"),
                    end_date=datetime(2025, 1, 10),
                ),
                now=now,
            )
            upcoming = await get_upcoming_credit_payments(session, owner.id, now, days=30)
            assert [u["days_until"] for u in upcoming] == [5]
            assert upcoming[0]["credit_name"] == "Mortgage"

            payment = await record_credit_payment(
                session,
                credit,
                CreditPaymentRecord(
                    amount=Decimal("250"),
                    principal=Decimal("250"),
                    interest=Decimal("0"),
                    payment_date=datetime(2024, 1, 6),
                ),
            )
            assert payment.is_paid
            assert payment.remaining_balance == Decimal("950.00")
            assert credit.remaining_amount == Decimal("950.00")
            account = await session.get(Account, account.id, populate_existing=True)
            assert account.balance == Decimal("750.00")

            assert await get_credit(session, credit.id) is credit
            await delete_credit(session, credit)
            assert await get_credit(session, credit.id) is None
            assert await get_credit_payments(session, credit.id) == []

    asyncio.run(run())


def test_credit_payment_never_drives_remaining_below_zero():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        async with TestSession() as session:
            credit = await create_credit(
                session,
                owner.id,
                _credit_data(
                    account.id,
                    total_amount=Decimal("1200"),
                    monthly_payment=Decimal("100"),
                    interest_rate=Decimal("0"),
                    end_date=datetime(2025, 1, 10),
                    remaining_amount=Decimal("100"),
                ),
                now=datetime(2024, 1, 5),
            )
            payment = await record_credit_payment(
                session,
                credit,
                CreditPaymentRecord(
                    amount=Decimal("300"),
                    principal=Decimal("300"),
                    interest=Decimal("0"),
                    payment_date=datetime(2024, 1, 6),
                ),
            )
            assert payment.remaining_balance == Decimal("0.00")
            assert credit.remaining_amount == Decimal("0.00")
            assert await get_total_remaining_debt(session, owner.id) == Decimal("0.00")
            account = await session.get(Account, account.id, populate_existing=True)
            assert account.balance == Decimal("700.00")

    asyncio.run(run())


def test_delete_subscription():
    async def run():
        TestSession, owner, _, account = await _setup_test_db()
        async with TestSession() as session:
            sub = await create_subscription(
                session,
                owner.id,
                SubscriptionCreate(
                    account_id=account.id, name="Gym", amount=Decimal("25.00"),
                    payment_day=3,
                ),
                now=datetime(2024, 1, 1),
            )
            await delete_subscription(session, sub)
            assert await session.get(Subscription, sub.id) is None
            assert await get_total_monthly_subscriptions(session, owner.id) == Decimal("0.00")

    asyncio.run(run())


def test_create_transaction_adjusts_balance():
    async def run():
        TestSession, _, _, account = await _setup_test_db()
        async with TestSession() as session:
            await create_transaction(
                session,
                TransactionCreate(
                    account_id=account.id,
                    type=TransactionType.EXPENSE,
                    amount=Decimal("42.10"),
                    description="Groceries",
                    date=datetime(2024, 2, 1),
                ),
            )
            await create_transaction(
                session,
                TransactionCreate(
                    account_id=account.id,
                    type=TransactionType.TRANSFER,
                    amount=Decimal("100"),
                    date=datetime(2024, 2, 2),
                ),
            )
            account = await session.get(Account, account.id, populate_existing=True)
            assert account.balance == Decimal("857.90")

    asyncio.run(run())
