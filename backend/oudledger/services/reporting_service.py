# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import GiftCard, GiftCardTransaction
from ..models.gift_cards import (
    GIFT_CARD_ACTIVE,
    GIFT_CARD_EXPIRED,
    TXN_EXPIRED,
    TXN_REDEEMED,
)
from oudledger.time_utils import normalize_datetime, parse_iso_datetime, to_utc_z


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _coerce_bound(value, name: str) -> datetime:
    if value is None or value == "":
        raise ReportError(f"{name} is required")
    if isinstance(value, datetime):
        return normalize_datetime(value)
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ReportError(f"{name} must be an ISO-8601 datetime")
    if parsed is None:
        raise ReportError(f"{name} is required")
    return parsed


def _parse_range(start, end) -> tuple[datetime, datetime]:
    start_dt = _coerce_bound(start, "start")
    end_dt = _coerce_bound(end, "end")
    if end_dt < start_dt:
        raise ReportError("end must not be before start")
    return start_dt, end_dt


def gift_card_report(*, start, end) -> dict:
    """
    Gift card activity for a period.

    WHY: Finance needs issued vs redeemed vs forfeited value, plus the
    outstanding liability carried on active cards.

    - issued:   cards whose issued_at falls in [start, end]; face value summed
    - redeemed: REDEEMED ledger entries created in [start, end]
    - expired:  EXPIRED cards whose expires_at falls in [start, end];
                value is the balance forfeited by their EXPIRED entries
    - active:   all ACTIVE cards with balance > 0 (point-in-time, not ranged)
    - redemption_rate: redeemed count / issued count * 100 (0 when nothing issued)
    """
    start_dt, end_dt = _parse_range(start, end)

    issued_count, issued_total = db.session.query(
        func.count(GiftCard.id),
        func.coalesce(func.sum(GiftCard.amount_cents), 0),
    ).filter(
        GiftCard.issued_at >= start_dt,
        GiftCard.issued_at <= end_dt,
    ).one()

    redeemed_count, redeemed_total = db.session.query(
        func.count(GiftCardTransaction.id),
        func.coalesce(func.sum(GiftCardTransaction.amount_cents), 0),
    ).filter(
        GiftCardTransaction.transaction_type == TXN_REDEEMED,
        GiftCardTransaction.created_at >= start_dt,
        GiftCardTransaction.created_at <= end_dt,
    ).one()

    expired_filters = (
        GiftCard.status == GIFT_CARD_EXPIRED,
        GiftCard.expires_at >= start_dt,
        GiftCard.expires_at <= end_dt,
    )
    expired_count = db.session.query(func.count(GiftCard.id)).filter(*expired_filters).scalar()
    expired_total = db.session.query(
        func.coalesce(func.sum(GiftCardTransaction.amount_cents), 0),
    ).join(
        GiftCard, GiftCard.id == GiftCardTransaction.gift_card_id,
    ).filter(
        GiftCardTransaction.transaction_type == TXN_EXPIRED,
        *expired_filters,
    ).scalar()

    active_count, active_total = db.session.query(
        func.count(GiftCard.id),
        func.coalesce(func.sum(GiftCard.balance_cents), 0),
    ).filter(
        GiftCard.status == GIFT_CARD_ACTIVE,
        GiftCard.balance_cents > 0,
    ).one()

    issued_count = int(issued_count or 0)
    redeemed_count = int(redeemed_count or 0)
    redemption_rate = (redeemed_count / issued_count * 100) if issued_count else 0.0

    return {
        "period": {
            "start_date": to_utc_z(start_dt),
            "end_date": to_utc_z(end_dt),
        },
        "issued": {
            "count": issued_count,
            "total_value_cents": int(issued_total or 0),
        },
        # Ledger debits are negative; report magnitudes
        "redeemed": {
            "count": redeemed_count,
            "total_value_cents": abs(int(redeemed_total or 0)),
        },
        "expired": {
            "count": int(expired_count or 0),
            "total_value_cents": abs(int(expired_total or 0)),
        },
        "active": {
            "count": int(active_count or 0),
            "total_outstanding_cents": int(active_total or 0),
        },
        "redemption_rate": round(redemption_rate, 2),
    }
