from __future__ import annotations

from ..extensions import db
from oudledger.time_utils import to_utc_z, utcnow


# =============================================================================
# STATUS / TRANSACTION TYPES (CONSTANTS)
# =============================================================================

GIFT_CARD_ACTIVE = "ACTIVE"
GIFT_CARD_USED = "USED"
GIFT_CARD_EXPIRED = "EXPIRED"
GIFT_CARD_CANCELLED = "CANCELLED"

GIFT_CARD_STATUSES = [
    GIFT_CARD_ACTIVE,
    GIFT_CARD_USED,
    GIFT_CARD_EXPIRED,
    GIFT_CARD_CANCELLED,
]

TXN_ISSUED = "ISSUED"
TXN_REDEEMED = "REDEEMED"
TXN_REFUNDED = "REFUNDED"
TXN_EXPIRED = "EXPIRED"
TXN_BONUS = "BONUS"
TXN_ADDED = "ADDED"

TRANSACTION_TYPES = [
    TXN_ISSUED,
    TXN_REDEEMED,
    TXN_REFUNDED,
    TXN_EXPIRED,
    TXN_BONUS,
    TXN_ADDED,
]


class GiftCard(db.Model):
    """
    Stored-value gift card.

    WHY: Gift cards are sold at the till and later tendered against sales.
    The face value (amount_cents) is fixed at issuance; balance_cents moves
    only through ledger operations in gift_card_service.

    LIFECYCLE:
    - ACTIVE: issued, redeemable while balance > 0 and not past expires_at
    - USED: balance exhausted
    - EXPIRED: expires_at passed; remaining balance forfeited
    - CANCELLED: voided by staff; remaining balance refunded off the card

    INVARIANTS:
    - 0 <= balance_cents <= amount_cents (CHECK constraints)
    - balance_cents == sum of this card's transaction amounts
    - version_id guards every balance/status write (optimistic locking)
    """
    __tablename__ = "gift_cards"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        db.CheckConstraint("balance_cents >= 0", name="balance_non_negative"),
        db.CheckConstraint("balance_cents <= amount_cents", name="balance_within_face_value"),
        db.Index("ix_gift_cards_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-shareable code (e.g., "PO-1A2B-3C4D-5E6F")
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # PNG data URL of the QR envelope
    qr_code = db.Column(db.Text, nullable=True)

    # Money (minor units, e.g. fils for AED)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="AED")

    status = db.Column(db.String(16), nullable=False, default=GIFT_CARD_ACTIVE, index=True)

    # Weak references (lookup only)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    purchased_by_id = db.Column(db.Integer, nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Display metadata (no behavioral effect)
    notes = db.Column(db.Text, nullable=True)
    recipient_name = db.Column(db.String(128), nullable=True)
    recipient_name_ar = db.Column(db.String(128), nullable=True)
    message = db.Column(db.Text, nullable=True)
    message_ar = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_qr: bool = False) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "amount_cents": self.amount_cents,
            "balance_cents": self.balance_cents,
            "currency": self.currency,
            "status": self.status,
            "customer_id": self.customer_id,
            "purchased_by_id": self.purchased_by_id,
            "issued_at": to_utc_z(self.issued_at),
            "expires_at": to_utc_z(self.expires_at),
            "updated_at": to_utc_z(self.updated_at),
            "notes": self.notes,
            "recipient_name": self.recipient_name,
            "recipient_name_ar": self.recipient_name_ar,
            "message": self.message,
            "message_ar": self.message_ar,
            "version_id": self.version_id,
        }
        if include_qr:
            data["qr_code"] = self.qr_code
        return data

    def summary_dict(self) -> dict:
        return {
            "code": self.code,
            "amount_cents": self.amount_cents,
            "balance_cents": self.balance_cents,
            "currency": self.currency,
            "status": self.status,
            "issued_at": to_utc_z(self.issued_at),
            "expires_at": to_utc_z(self.expires_at),
        }

    def __repr__(self) -> str:
        return f"<GiftCard {self.code} {self.status} {self.balance_cents}/{self.amount_cents}>"


class GiftCardTransaction(db.Model):
    """
    Append-only ledger of gift card balance events.

    TRANSACTION TYPES:
    - ISSUED: Face value loaded at issuance (+)
    - REDEEMED: Value tendered against an order (-)
    - REFUNDED: Refund credited back (+) or balance refunded off on cancel (-)
    - EXPIRED: Remaining balance forfeited at expiry (-), at most one per card
    - BONUS / ADDED: Promotional or goodwill credit (+)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "gift_card_transactions"
    __table_args__ = (
        db.Index("ix_gift_card_txns_card_created", "gift_card_id", "created_at"),
        db.Index("ix_gift_card_txns_type_created", "transaction_type", "created_at"),
        # One expiry entry per card, even under concurrent sweeps
        db.Index(
            "uq_gift_card_txns_one_expiry",
            "gift_card_id",
            unique=True,
            sqlite_where=db.text("transaction_type = 'EXPIRED'"),
            postgresql_where=db.text("transaction_type = 'EXPIRED'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gift_card_id = db.Column(db.Integer, db.ForeignKey("gift_cards.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)  # Positive for credits, negative for debits

    # Correlation to an external sale/order
    order_id = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    gift_card = db.relationship("GiftCard", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gift_card_id": self.gift_card_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "order_id": self.order_id,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
