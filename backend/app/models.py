"""Database models used by the MoneyStack backend.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent users, bank accounts, transactions and the recurring
obligations (subscriptions and credits) that the scheduler settles.
Money is stored as ``Decimal`` with two decimal places.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List
from datetime import datetime
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON


class AccountType(str, Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CASH = "CASH"
    INVESTMENT = "INVESTMENT"
    CREDIT_CARD = "CREDIT_CARD"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class RecurringFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class CreditType(str, Enum):
    MORTGAGE = "MORTGAGE"
    AUTO = "AUTO"
    PERSONAL = "PERSONAL"
    STUDENT = "STUDENT"
    OTHER = "OTHER"


class User(SQLModel, table=True):
    """Owner of accounts and obligations."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    accounts: List["Account"] = Relationship(back_populates="user")


class Account(SQLModel, table=True):
    """Bank account holding a running balance."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    name: str
    type: AccountType = AccountType.CHECKING
    balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    user: User = Relationship(back_populates="accounts")


class Category(SQLModel, table=True):
    """Income or expense category; ``user_id`` is empty for defaults."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    name: str
    type: CategoryType = CategoryType.EXPENSE


class Transaction(SQLModel, table=True):
    """Ledger entry on an account.

    A transaction flagged ``is_recurring`` with a frequency acts as the
    template for generated occurrences, which point back to it through
    ``parent_transaction_id``.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    type: TransactionType
    description: str = ""
    date: datetime = Field(default_factory=datetime.utcnow, index=True)
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    recurring_end_date: Optional[datetime] = None
    parent_transaction_id: Optional[int] = Field(
        default=None, foreign_key="transaction.id", index=True
    )
    tags: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Subscription(SQLModel, table=True):
    """Fixed charge repeating at ``frequency``, next due at ``next_payment_date``."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    account_id: int = Field(foreign_key="account.id")
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    name: str
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    frequency: RecurringFrequency = RecurringFrequency.MONTHLY
    payment_day: int = 1
    next_payment_date: datetime = Field(index=True)
    reminder_days: int = 3
    is_active: bool = True
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Credit(SQLModel, table=True):
    """Amortizing loan repaid by a fixed monthly installment."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    account_id: int = Field(foreign_key="account.id")
    name: str
    type: CreditType = CreditType.OTHER
    total_amount: Decimal = Field(max_digits=14, decimal_places=2)
    remaining_amount: Decimal = Field(max_digits=14, decimal_places=2)
    monthly_payment: Decimal = Field(max_digits=14, decimal_places=2)
    interest_rate: Decimal = Field(
        default=Decimal("0"), max_digits=7, decimal_places=4
    )  # annual percentage
    start_date: datetime
    end_date: datetime
    payment_day: int = 1
    reminder_days: int = 3
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    payments: List["CreditPayment"] = Relationship(
        back_populates="credit",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class CreditPayment(SQLModel, table=True):
    """Single installment of a credit, with its principal/interest split."""

    id: Optional[int] = Field(default=None, primary_key=True)
    credit_id: int = Field(foreign_key="credit.id", index=True)
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    principal: Decimal = Field(max_digits=14, decimal_places=2)
    interest: Decimal = Field(max_digits=14, decimal_places=2)
    remaining_balance: Decimal = Field(max_digits=14, decimal_places=2)
    payment_date: datetime = Field(index=True)
    is_paid: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    credit: Credit = Relationship(back_populates="payments")
