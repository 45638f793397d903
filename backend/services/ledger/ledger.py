"""
Append-only balance mutation log.

A credit or debit locks the wallet row, writes the new balance and appends
one WalletTransaction carrying the balance before and after, all inside the
caller's transaction. Debits may take a balance negative (debt). Recovering
that debt is the caller's job, this module never decides policy.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from django.db import transaction

from wallets.models import Wallet, WalletTransaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


def to_money(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def get_or_create_wallet(owner, kind: str) -> Wallet:
    wallet, created = Wallet.objects.get_or_create(owner=owner, kind=kind)
    if created:
        logger.info("Opened %s wallet for user %s", kind, owner.pk)
    return wallet


def lock_wallet(owner, kind: str) -> Wallet:
    """Fetch (creating if needed) and row-lock a wallet for the current transaction."""
    wallet = get_or_create_wallet(owner, kind)
    return Wallet.objects.select_for_update().get(pk=wallet.pk)


@transaction.atomic
def credit(wallet: Wallet, amount, reason: str, reference_id=None, description: str = "") -> Optional[WalletTransaction]:
    """Add ``amount`` to the wallet. Amounts <= 0 are a no-op and return None."""
    return _apply(wallet, "credit", amount, reason, reference_id, description)


@transaction.atomic
def debit(wallet: Wallet, amount, reason: str, reference_id=None, description: str = "") -> Optional[WalletTransaction]:
    """Subtract ``amount`` from the wallet, allowing a negative result."""
    return _apply(wallet, "debit", amount, reason, reference_id, description)


def _apply(wallet, tx_type, amount, reason, reference_id, description):
    amount = to_money(amount)
    if amount <= 0:
        return None

    locked = Wallet.objects.select_for_update().get(pk=wallet.pk)
    before = locked.balance
    after = before + amount if tx_type == "credit" else before - amount

    locked.balance = after
    locked.save(update_fields=["balance", "updated_at"])

    entry = WalletTransaction.objects.create(
        wallet=locked,
        type=tx_type,
        amount=amount,
        balance_before=before,
        balance_after=after,
        description=description or reason,
        reference_type=reason,
        reference_id="" if reference_id is None else str(reference_id),
    )

    # Keep the caller's instance in step with the row
    wallet.balance = after
    logger.info(
        "Wallet %s %s %s (%s -> %s) ref=%s:%s",
        wallet.pk, tx_type, amount, before, after, reason, reference_id,
    )
    return entry


def get_wallet_balance(owner, kind: str = "driver") -> dict:
    wallet = get_or_create_wallet(owner, kind)
    return {
        "wallet_id": wallet.id,
        "kind": wallet.kind,
        "balance": wallet.balance,
        "currency": wallet.currency,
    }


def get_wallet_transactions(owner, kind: str = "driver", limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> dict:
    """Newest first. ``limit`` is clamped to 1..100."""
    wallet = get_or_create_wallet(owner, kind)
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    qs = wallet.transactions.order_by("-id")
    return {
        "wallet_id": wallet.id,
        "total": qs.count(),
        "limit": limit,
        "offset": offset,
        "transactions": list(qs[offset:offset + limit]),
    }


@dataclass
class LedgerAudit:
    wallet_id: int
    balance: Decimal
    replayed_balance: Decimal
    broken_links: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.broken_links and self.balance == self.replayed_balance


def replay_wallet(wallet: Wallet) -> LedgerAudit:
    """Sum the transaction log from zero and check every before/after link."""
    replayed = Decimal("0.00")
    previous_after = None
    broken = []

    for entry in wallet.transactions.order_by("id").iterator():
        if previous_after is not None and entry.balance_before != previous_after:
            broken.append(entry.id)
        if entry.balance_before + entry.signed_amount != entry.balance_after:
            broken.append(entry.id)
        replayed += entry.signed_amount
        previous_after = entry.balance_after

    return LedgerAudit(
        wallet_id=wallet.id,
        balance=wallet.balance,
        replayed_balance=replayed,
        broken_links=broken,
    )
