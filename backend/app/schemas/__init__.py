"""Convenience imports for all schema classes."""

from .transaction import TransactionCreate
from .subscription import SubscriptionCreate, SubscriptionUpdate
from .credit import CreditCreate, CreditUpdate, CreditPaymentRecord

__all__ = [
    "TransactionCreate",
    "SubscriptionCreate",
    "SubscriptionUpdate",
    "CreditCreate",
    "CreditUpdate",
    "CreditPaymentRecord",
]
