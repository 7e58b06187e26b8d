"""Ledger module: deposits, withdrawals and sync cursors."""

from custodex.ledger.database import Database
from custodex.ledger.models import (
    Deposit,
    DepositStatus,
    SyncState,
    Withdrawal,
    WithdrawalStatus,
)
from custodex.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "Deposit",
    "SyncState",
    "Withdrawal",
    # Enums
    "DepositStatus",
    "WithdrawalStatus",
    # Database
    "Database",
    "LedgerRepository",
]
