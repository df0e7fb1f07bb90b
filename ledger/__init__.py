"""
Member Balance Ledger

This module provides:
- Atomic charge posting against a member balance (overdraft allowed)
- Void flow that reverses a charge exactly once and keeps the audit trail
- Manual balance adjustments (deposit / withdrawal / correction)
- Balance recalculation to repair drift
- Idempotent charge submission keyed by a caller-supplied token
"""

from .models import (
    AdjustmentType,
    TransactionSource,
    TransactionStatus,
    Transaction,
    BalanceAdjustment,
    MemberBalance,
)
from .service import LedgerService
from .storage import InMemoryStorage, LedgerStore, StoreError

__all__ = [
    "AdjustmentType",
    "TransactionSource",
    "TransactionStatus",
    "Transaction",
    "BalanceAdjustment",
    "MemberBalance",
    "LedgerService",
    "InMemoryStorage",
    "LedgerStore",
    "StoreError",
]
