"""
Creator Reward Ledger

This module provides:
- SA rewards for verified creators, one flat payout per interaction
- Daily earning cap with lazy UTC rollover and an idempotent reset sweep
- SA to USD conversion
- Withdrawals that debit only after the payment gateway confirms
- Append-only transaction history
"""

from .models import (
    TransactionType,
    TransactionStatus,
    Currency,
    WithdrawalMethod,
    Wallet,
    CreatorStats,
    Transaction,
)
from .service import RewardLedger

__all__ = [
    "TransactionType",
    "TransactionStatus",
    "Currency",
    "WithdrawalMethod",
    "Wallet",
    "CreatorStats",
    "Transaction",
    "RewardLedger",
]
