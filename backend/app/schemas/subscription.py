"""Schemas for subscriptions charged to an account on a schedule."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.models import RecurringFrequency


class SubscriptionBase(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    name: str = Field(min_length=1)
    amount: Decimal = Field(ge=Decimal("0.01"), decimal_places=2)
    frequency: RecurringFrequency = RecurringFrequency.MONTHLY
    payment_day: int = Field(ge=1, le=31)
    reminder_days: int = Field(default=3, ge=0, le=30)
    notes: Optional[str] = None


class SubscriptionCreate(SubscriptionBase):
    pass


class SubscriptionUpdate(BaseModel):
    account_id: int | None = None
    category_id: int | None = None
    name: str | None = Field(default=None, min_length=1)
    amount: Decimal | None = Field(default=None, ge=Decimal("0.01"), decimal_places=2)
    frequency: RecurringFrequency | None = None
    payment_day: int | None = Field(default=None, ge=1, le=31)
    reminder_days: int | None = Field(default=None, ge=0, le=30)
    is_active: bool | None = None
    notes: str | None = None
