"""
Ledger - the only writer of wallet balances.

This module handles:
    - Credit / debit with before/after balances
    - Read projections (balance, paged transactions)
    - Replay audit of a wallet's transaction chain
"""

from .ledger import (
    LedgerAudit,
    credit,
    debit,
    get_or_create_wallet,
    get_wallet_balance,
    lock_wallet,
    get_wallet_transactions,
    replay_wallet,
)

__all__ = [
    "LedgerAudit",
    "credit",
    "debit",
    "get_or_create_wallet",
    "get_wallet_balance",
    "lock_wallet",
    "get_wallet_transactions",
    "replay_wallet",
]
