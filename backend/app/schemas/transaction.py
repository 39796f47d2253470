"""Transaction-related request models."""

from decimal import Decimal
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from app.models import TransactionType, RecurringFrequency


class TransactionBase(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    amount: Decimal = Field(gt=0, decimal_places=2)
    description: str = ""
    date: datetime
    tags: list[str] = Field(default_factory=list)


class TransactionCreate(TransactionBase):
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    recurring_end_date: Optional[datetime] = None
