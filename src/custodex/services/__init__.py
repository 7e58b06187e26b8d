"""Deposit ingestion and withdrawal settlement services."""

from custodex.services.deposit_monitor import CycleResult, DepositMonitor, ScanResult
from custodex.services.withdrawal_processor import ProcessResult, WithdrawalProcessor
from custodex.services.withdrawal_requests import (
    DailyLimitCheck,
    WithdrawalRequestService,
    calculate_fee,
)

__all__ = [
    "CycleResult",
    "DailyLimitCheck",
    "DepositMonitor",
    "ProcessResult",
    "ScanResult",
    "WithdrawalProcessor",
    "WithdrawalRequestService",
    "calculate_fee",
]
