# Overview: Service-layer operations for the gift card ledger; append-only transaction entries.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import GiftCardTransaction
from oudledger.time_utils import utcnow
"""
Gift Card Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted; corrections are new entries.
- Entries are written inside the same DB transaction as the balance/status change they record.
- Signed amounts: credits positive, debits negative.
- For every card: balance_cents == sum(amount_cents) over all its entries (ISSUED included).
- At most one EXPIRED entry per card (partial unique index).
"""


def append_gift_card_transaction(
    *,
    gift_card_id: int,
    transaction_type: str,
    amount_cents: int,
    created_by_id: int | None = None,
    order_id: str | None = None,
    notes: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> GiftCardTransaction:
    """
    Append-only gift card ledger entry.

    - No domain logic here.
    - No deletes/updates of existing entries.
    - Flushes (to assign id) but never commits.
    """
    txn = GiftCardTransaction(
        gift_card_id=gift_card_id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        created_by_id=created_by_id,
        order_id=order_id,
        notes=notes[:255] if notes else notes,
        created_at=created_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()  # ensures txn.id is assigned without committing
    return txn


def ledger_balance_cents(gift_card_id: int) -> int:
    """Balance derived from the ledger alone."""
    total = db.session.query(
        func.coalesce(func.sum(GiftCardTransaction.amount_cents), 0)
    ).filter(GiftCardTransaction.gift_card_id == gift_card_id).scalar()
    return int(total or 0)


def has_transaction(gift_card_id: int, transaction_type: str) -> bool:
    return db.session.query(
        db.session.query(GiftCardTransaction).filter_by(
            gift_card_id=gift_card_id,
            transaction_type=transaction_type,
        ).exists()
    ).scalar()


def list_transactions(gift_card_id: int) -> list[GiftCardTransaction]:
    """Entries for a card, newest first."""
    return db.session.query(GiftCardTransaction).filter_by(
        gift_card_id=gift_card_id
    ).order_by(
        GiftCardTransaction.created_at.desc(),
        GiftCardTransaction.id.desc(),
    ).all()
