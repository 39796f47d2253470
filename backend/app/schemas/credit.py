"""Schemas for installment credits and their payments."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.models import CreditType


class CreditBase(BaseModel):
    account_id: int
    name: str = Field(min_length=1)
    type: CreditType = CreditType.OTHER
    total_amount: Decimal = Field(ge=0, decimal_places=2)
    monthly_payment: Decimal = Field(ge=0, decimal_places=2)
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    start_date: datetime
    end_date: datetime
    payment_day: int = Field(default=1, ge=1, le=31)
    reminder_days: int = Field(default=3, ge=0, le=30)
    notes: Optional[str] = None


class CreditCreate(CreditBase):
    remaining_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (
            self.remaining_amount is not None
            and self.remaining_amount > self.total_amount
        ):
            raise ValueError("remaining_amount cannot exceed total_amount")
        return self


class CreditUpdate(BaseModel):
    account_id: int | None = None
    name: str | None = Field(default=None, min_length=1)
    type: CreditType | None = None
    total_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    monthly_payment: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    start_date: datetime | None = None
    end_date: datetime | None = None
    payment_day: int | None = Field(default=None, ge=1, le=31)
    reminder_days: int | None = Field(default=None, ge=0, le=30)
    notes: str | None = None


class CreditPaymentRecord(BaseModel):
    """Installment paid by hand, outside the generated schedule."""

    amount: Decimal = Field(gt=0, decimal_places=2)
    principal: Decimal = Field(ge=0, decimal_places=2)
    interest: Decimal = Field(ge=0, decimal_places=2)
    payment_date: datetime
