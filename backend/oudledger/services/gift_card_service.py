# Overview: Service-layer operations for gift cards; encapsulates business logic and database work.

"""
Gift Card Service

WHY: Gift cards are sold at the till, scanned back at checkout, topped up by
customer service and swept at expiry. Every balance movement must be
auditable and must never overdraw a card.

LIFECYCLE:
- ACTIVE -> USED       (balance reaches 0 on redemption, or detected on validation)
- ACTIVE -> EXPIRED    (expires_at passed; lazy on validation, or by the sweep)
- ANY    -> CANCELLED  (staff cancellation; balance refunded off the card)
- USED   -> ACTIVE     (credit with allow_reactivation=True only)
EXPIRED and CANCELLED are final.

DESIGN PRINCIPLES:
- Every balance/status write appends exactly one ledger entry in the same commit
- balance_cents always equals the sum of the card's ledger entries
- Redeem/credit/cancel lock the row and write through version_id (optimistic lock);
  a card that changed since validation is rejected, never overwritten
- Lazy transitions found while validating are persisted with status-guarded
  UPDATEs and committed even when the caller's operation then fails
- Nothing is retried here; callers decide retry policy
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import GiftCard, GiftCardTransaction
from ..models.gift_cards import (
    GIFT_CARD_ACTIVE,
    GIFT_CARD_CANCELLED,
    GIFT_CARD_EXPIRED,
    GIFT_CARD_USED,
    TXN_ADDED,
    TXN_BONUS,
    TXN_EXPIRED,
    TXN_ISSUED,
    TXN_REDEEMED,
    TXN_REFUNDED,
)
from oudledger.time_utils import add_years, normalize_datetime, to_utc_z, utcnow
from .concurrency import guarded_update, lock_for_update, run_atomic
from .gift_card_codes import generate_gift_card_code, normalize_code
from .ledger_service import append_gift_card_transaction, has_transaction, ledger_balance_cents, list_transactions
from .qr_service import build_envelope, decode_qr_payload, render_qr_data_url


DEFAULT_ISSUER = "Perfume & Oud"
DEFAULT_CURRENCY = "AED"
DEFAULT_VALIDITY_YEARS = 2

CREDIT_TYPES = [TXN_BONUS, TXN_ADDED, TXN_REFUNDED]

CONFLICT_MESSAGE = "Gift card was modified concurrently; operation rejected"


# =============================================================================
# ERRORS
# =============================================================================

class GiftCardError(Exception):
    """Raised for gift card operation errors."""
    pass


class GiftCardNotFoundError(GiftCardError):
    def __init__(self, message: str = "Gift card not found"):
        super().__init__(message)


class GiftCardInvalidStateError(GiftCardError):
    """Card status (or expiry) forbids the operation."""

    def __init__(self, message: str, status: str | None = None):
        self.status = status
        super().__init__(message)


class InsufficientBalanceError(GiftCardError):
    def __init__(self, available_cents: int, currency: str = DEFAULT_CURRENCY):
        self.available_cents = available_cents
        super().__init__(f"Insufficient balance. Available: {available_cents / 100:.2f} {currency}")


class GiftCardAlreadyCancelledError(GiftCardError):
    def __init__(self, message: str = "Gift card is already cancelled"):
        super().__init__(message)


class GiftCardConflictError(GiftCardError):
    """Lost a race: the card changed between read and write."""
    pass


class InvalidAmountError(GiftCardError):
    pass


# =============================================================================
# GREETING TEMPLATES
# =============================================================================

GIFT_CARD_TEMPLATES = {
    "birthday": {
        "en": {
            "title": "Happy Birthday!",
            "message": "Wishing you a wonderful birthday filled with beautiful fragrances and memorable moments!",
        },
        "ar": {
            "title": "عيد ميلاد سعيد!",
            "message": "نتمنى لك عيد ميلاد رائع مليء بالعطور الجميلة واللحظات التي لا تُنسى!",
        },
    },
    "wedding": {
        "en": {
            "title": "Congratulations on Your Wedding!",
            "message": "May your love story be as beautiful and lasting as our finest fragrances. Congratulations!",
        },
        "ar": {
            "title": "مبروك الزواج!",
            "message": "عسى أن تكون قصة حبكم جميلة ودائمة مثل أجود عطورنا. مبروك!",
        },
    },
    "eid": {
        "en": {
            "title": "Eid Mubarak!",
            "message": "May this blessed Eid bring you joy, peace, and the finest fragrances to celebrate with!",
        },
        "ar": {
            "title": "عيد مبارك!",
            "message": "عسى أن يجلب لك هذا العيد المبارك الفرح والسلام وأجود العطور للاحتفال!",
        },
    },
    "ramadan": {
        "en": {
            "title": "Ramadan Kareem!",
            "message": "Wishing you a blessed Ramadan filled with spiritual reflection and beautiful moments.",
        },
        "ar": {
            "title": "رمضان كريم!",
            "message": "نتمنى لك رمضان مبارك مليء بالتأمل الروحي واللحظات الجميلة.",
        },
    },
    "graduation": {
        "en": {
            "title": "Congratulations Graduate!",
            "message": "Your achievement deserves to be celebrated with the finest fragrances. Congratulations!",
        },
        "ar": {
            "title": "مبروك التخرج!",
            "message": "إنجازك يستحق الاحتفال بأجود العطور. مبروك!",
        },
    },
    "corporate": {
        "en": {
            "title": "Thank You for Your Business",
            "message": "We appreciate your partnership and look forward to serving you with excellence.",
        },
        "ar": {
            "title": "شكراً لتعاملكم معنا",
            "message": "نقدر شراكتكم ونتطلع لخدمتكم بامتياز.",
        },
    },
}


def get_gift_card_templates() -> dict:
    return GIFT_CARD_TEMPLATES


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class GiftCardValidation:
    valid: bool
    gift_card: GiftCard | None = None
    error: str | None = None
    available_balance_cents: int | None = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "error": self.error,
            "available_balance_cents": self.available_balance_cents,
            "gift_card": self.gift_card.to_dict() if self.gift_card else None,
        }


@dataclass
class RedemptionResult:
    success: bool
    gift_card: GiftCard
    redeemed_amount_cents: int
    remaining_balance_cents: int
    transaction_id: int

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "gift_card": self.gift_card.to_dict(),
            "redeemed_amount_cents": self.redeemed_amount_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "transaction_id": self.transaction_id,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _config(key: str, default):
    return current_app.config.get(key, default)


def _require_positive_cents(value, field: str = "amount_cents") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{field} must be an integer")
    if value <= 0:
        raise InvalidAmountError(f"{field} must be positive")
    return value


def _money(cents: int, currency: str) -> str:
    return f"{cents / 100:.2f} {currency}"


def _get_by_code(code: str) -> GiftCard | None:
    return db.session.query(GiftCard).filter_by(code=normalize_code(code)).first()


def _lock_by_code(code: str) -> GiftCard | None:
    return lock_for_update(
        db.session.query(GiftCard).filter_by(code=normalize_code(code))
    ).populate_existing().first()


def _lock_by_id(gift_card_id: int) -> GiftCard | None:
    return lock_for_update(
        db.session.query(GiftCard).filter_by(id=gift_card_id)
    ).populate_existing().first()


def _raise_for_validation(validation: GiftCardValidation):
    if validation.gift_card is None:
        raise GiftCardNotFoundError(validation.error or "Gift card not found")
    raise GiftCardInvalidStateError(
        validation.error or "Invalid gift card",
        status=validation.gift_card.status,
    )


def _expire_card(card: GiftCard, notes: str) -> bool:
    """
    ACTIVE -> EXPIRED, forfeiting the balance with one EXPIRED ledger entry.

    Guarded on status and version: returns False (no write) if another
    writer got there first.
    """
    forfeited = card.balance_cents
    updated = guarded_update(
        GiftCard,
        GiftCard.id == card.id,
        GiftCard.status == GIFT_CARD_ACTIVE,
        GiftCard.version_id == card.version_id,
        status=GIFT_CARD_EXPIRED,
        balance_cents=0,
    )
    if not updated:
        return False

    append_gift_card_transaction(
        gift_card_id=card.id,
        transaction_type=TXN_EXPIRED,
        amount_cents=-forfeited,
        created_by_id=card.purchased_by_id,
        notes=notes,
    )
    return True


# =============================================================================
# ISSUANCE
# =============================================================================

def issue_gift_card(
    *,
    amount_cents: int,
    purchased_by_id: int,
    currency: str | None = None,
    customer_id: int | None = None,
    expires_at: datetime | None = None,
    notes: str | None = None,
    recipient_name: str | None = None,
    recipient_name_ar: str | None = None,
    message: str | None = None,
    message_ar: str | None = None,
    template: str | None = None,
) -> GiftCard:
    """
    Issue a new gift card.

    WHY: Creates the card and its ISSUED ledger entry in one commit, so a
    card never exists without the entry that explains its balance.

    Args:
        amount_cents: Face value in minor units (must be > 0)
        purchased_by_id: Staff user issuing the card
        currency: ISO code (default GIFT_CARD_DEFAULT_CURRENCY)
        expires_at: Defaults to issuance + GIFT_CARD_VALIDITY_YEARS
        template: Greeting template key; fills message/message_ar if omitted

    Raises:
        InvalidAmountError: Non-positive or non-integer amount
        GiftCardError: Missing issuer or unknown template
    """
    _require_positive_cents(amount_cents)
    if purchased_by_id is None:
        raise GiftCardError("purchased_by_id is required")

    if template:
        greeting = GIFT_CARD_TEMPLATES.get(template)
        if greeting is None:
            raise GiftCardError(f"Unknown gift card template: {template}. Must be one of {sorted(GIFT_CARD_TEMPLATES)}")
        message = message or greeting["en"]["message"]
        message_ar = message_ar or greeting["ar"]["message"]

    currency = (currency or _config("GIFT_CARD_DEFAULT_CURRENCY", DEFAULT_CURRENCY)).strip().upper()
    issued_at = utcnow()
    expires_at = normalize_datetime(expires_at) or add_years(
        issued_at, _config("GIFT_CARD_VALIDITY_YEARS", DEFAULT_VALIDITY_YEARS)
    )

    code = generate_gift_card_code()
    envelope = build_envelope(
        code=code,
        amount_cents=amount_cents,
        currency=currency,
        issuer=_config("GIFT_CARD_ISSUER", DEFAULT_ISSUER),
        timestamp=issued_at,
    )
    qr_code = render_qr_data_url(envelope)

    def _op():
        card = GiftCard(
            code=code,
            qr_code=qr_code,
            amount_cents=amount_cents,
            balance_cents=amount_cents,
            currency=currency,
            status=GIFT_CARD_ACTIVE,
            customer_id=customer_id,
            purchased_by_id=purchased_by_id,
            issued_at=issued_at,
            expires_at=expires_at,
            notes=notes,
            recipient_name=recipient_name,
            recipient_name_ar=recipient_name_ar,
            message=message,
            message_ar=message_ar,
        )
        db.session.add(card)
        db.session.flush()  # Get card ID

        append_gift_card_transaction(
            gift_card_id=card.id,
            transaction_type=TXN_ISSUED,
            amount_cents=amount_cents,
            created_by_id=purchased_by_id,
            notes="Gift card issued to customer" if customer_id else "Gift card issued",
            created_at=issued_at,
        )
        return card

    card = run_atomic(_op, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE)
    current_app.logger.info("Issued gift card %s for %s", card.code, _money(amount_cents, currency))
    return card


# =============================================================================
# VALIDATION (with lazy expiry / closing)
# =============================================================================

def validate_gift_card(code: str, *, now: datetime | None = None) -> GiftCardValidation:
    """
    Check whether a card can be redeemed right now.

    SIDE EFFECTS (committed even though the result is invalid):
    - Past expires_at: ACTIVE -> EXPIRED, balance forfeited via an EXPIRED entry
    - Zero balance:    ACTIVE -> USED

    Both writes are status-guarded, so racing validators make at most one change.
    """
    now = now or utcnow()
    card = _get_by_code(code)

    if card is None:
        return GiftCardValidation(valid=False, error="Gift card not found")

    if card.status != GIFT_CARD_ACTIVE:
        return GiftCardValidation(
            valid=False,
            error=f"Gift card is {card.status.lower()}",
            gift_card=card,
        )

    if card.expires_at and now > card.expires_at:
        expired = run_atomic(
            lambda: _expire_card(card, notes="Gift card expired - balance forfeited"),
            conflict_error=GiftCardConflictError,
            conflict_message=CONFLICT_MESSAGE,
        )
        if expired:
            current_app.logger.info("Gift card %s expired on validation", card.code)
        return GiftCardValidation(
            valid=False,
            error="Gift card has expired",
            gift_card=card,
        )

    if card.balance_cents <= 0:
        closed = run_atomic(
            lambda: guarded_update(
                GiftCard,
                GiftCard.id == card.id,
                GiftCard.status == GIFT_CARD_ACTIVE,
                GiftCard.balance_cents <= 0,
                status=GIFT_CARD_USED,
            ),
            conflict_error=GiftCardConflictError,
            conflict_message=CONFLICT_MESSAGE,
        )
        if closed:
            current_app.logger.info("Gift card %s closed on validation (no balance)", card.code)
        return GiftCardValidation(
            valid=False,
            error="Gift card has no remaining balance",
            gift_card=card,
            available_balance_cents=0,
        )

    return GiftCardValidation(
        valid=True,
        gift_card=card,
        available_balance_cents=card.balance_cents,
    )


def validate_qr_payload(payload: str) -> GiftCardValidation:
    """
    Validate a scanned QR envelope, then the card it names.

    Raises:
        InvalidQRPayloadError: Payload is not one of our gift card envelopes
    """
    envelope = decode_qr_payload(payload, issuer=_config("GIFT_CARD_ISSUER", DEFAULT_ISSUER))
    return validate_gift_card(envelope["code"])


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def redeem_gift_card(
    *,
    code: str,
    amount_cents: int,
    order_id: str | None = None,
    notes: str | None = None,
    created_by_id: int | None = None,
) -> RedemptionResult:
    """
    Redeem part or all of a card's balance.

    WHY: Core tender operation at checkout. Validation runs first (and may
    persist a lazy transition); the write then re-reads the card under lock
    and refuses if status or balance moved since validation.

    Raises:
        GiftCardNotFoundError: Unknown code
        GiftCardInvalidStateError: Used, expired or cancelled card
        InsufficientBalanceError: amount_cents exceeds available balance
        GiftCardConflictError: Card changed between validation and write
    """
    _require_positive_cents(amount_cents)

    validation = validate_gift_card(code)
    if not validation.valid:
        _raise_for_validation(validation)

    gift_card_id = validation.gift_card.id
    currency = validation.gift_card.currency
    available = validation.available_balance_cents

    if amount_cents > available:
        raise InsufficientBalanceError(available, currency)

    def _op():
        card = _lock_by_id(gift_card_id)
        if card is None:
            raise GiftCardNotFoundError()

        if card.status != GIFT_CARD_ACTIVE or card.balance_cents != available:
            raise GiftCardConflictError("Gift card changed since validation; redemption rejected")

        new_balance = available - amount_cents
        card.balance_cents = new_balance
        card.status = GIFT_CARD_USED if new_balance <= 0 else GIFT_CARD_ACTIVE
        db.session.flush()  # version-checked UPDATE

        txn = append_gift_card_transaction(
            gift_card_id=card.id,
            transaction_type=TXN_REDEEMED,
            amount_cents=-amount_cents,
            order_id=order_id,
            notes=notes or f"Gift card redeemed for {_money(amount_cents, currency)}",
            created_by_id=created_by_id if created_by_id is not None else card.purchased_by_id,
        )

        return RedemptionResult(
            success=True,
            gift_card=card,
            redeemed_amount_cents=amount_cents,
            remaining_balance_cents=new_balance,
            transaction_id=txn.id,
        )

    return run_atomic(_op, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE)


def add_balance(
    *,
    code: str,
    amount_cents: int,
    transaction_type: str,
    created_by_id: int,
    notes: str | None = None,
    allow_reactivation: bool = False,
) -> GiftCard:
    """
    Credit a card (refund, promotional bonus, goodwill).

    POLICY:
    - CANCELLED and EXPIRED cards cannot be credited
    - USED cards are revived to ACTIVE only with allow_reactivation=True
    - The balance may not rise above the face value

    Raises:
        GiftCardNotFoundError, GiftCardInvalidStateError, InvalidAmountError
    """
    _require_positive_cents(amount_cents)
    transaction_type = (transaction_type or "").strip().upper()
    if transaction_type not in CREDIT_TYPES:
        raise GiftCardError(f"Invalid credit type: {transaction_type}. Must be one of {CREDIT_TYPES}")

    def _op():
        card = _lock_by_code(code)
        if card is None:
            raise GiftCardNotFoundError()

        if card.status in (GIFT_CARD_CANCELLED, GIFT_CARD_EXPIRED):
            raise GiftCardInvalidStateError(
                f"Cannot credit a {card.status.lower()} gift card",
                status=card.status,
            )
        if card.status == GIFT_CARD_USED and not allow_reactivation:
            raise GiftCardInvalidStateError(
                "Gift card is used; crediting it requires allow_reactivation",
                status=card.status,
            )

        new_balance = card.balance_cents + amount_cents
        if new_balance > card.amount_cents:
            raise InvalidAmountError(
                f"Credit would raise the balance above the face value of {_money(card.amount_cents, card.currency)}"
            )

        card.balance_cents = new_balance
        card.status = GIFT_CARD_ACTIVE
        db.session.flush()

        append_gift_card_transaction(
            gift_card_id=card.id,
            transaction_type=transaction_type,
            amount_cents=amount_cents,
            created_by_id=created_by_id,
            notes=notes or f"Balance added: {_money(amount_cents, card.currency)}",
        )
        return card

    return run_atomic(_op, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE)


def cancel_gift_card(*, code: str, reason: str, created_by_id: int) -> GiftCard:
    """
    Cancel a card and refund its remaining balance off the ledger.

    The stored balance is zeroed together with the REFUNDED entry, so the
    ledger still reconciles after cancellation.

    Raises:
        GiftCardNotFoundError, GiftCardAlreadyCancelledError
    """
    def _op():
        card = _lock_by_code(code)
        if card is None:
            raise GiftCardNotFoundError()

        if card.status == GIFT_CARD_CANCELLED:
            raise GiftCardAlreadyCancelledError()

        refunded = card.balance_cents
        card.status = GIFT_CARD_CANCELLED
        card.balance_cents = 0
        db.session.flush()

        append_gift_card_transaction(
            gift_card_id=card.id,
            transaction_type=TXN_REFUNDED,
            amount_cents=-refunded,
            created_by_id=created_by_id,
            notes=f"Gift card cancelled: {reason}" if reason else "Gift card cancelled",
        )
        return card

    card = run_atomic(_op, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE)
    current_app.logger.info("Cancelled gift card %s", card.code)
    return card


def expire_old_gift_cards(*, now: datetime | None = None) -> int:
    """
    Sweep: expire every ACTIVE card whose expires_at has passed.

    IDEMPOTENT: a card is expired at most once (status guard) and carries at
    most one EXPIRED entry (partial unique index). EXPIRED cards missing their
    entry get it backfilled.

    Safe alongside redemptions: each card is its own unit of work; a card
    that changed under us is skipped, not overwritten.

    Returns:
        Number of cards transitioned to EXPIRED by this call
    """
    now = now or utcnow()
    expired_count = 0

    candidate_ids = [
        row.id
        for row in db.session.query(GiftCard.id).filter(
            GiftCard.status == GIFT_CARD_ACTIVE,
            GiftCard.expires_at < now,
        ).order_by(GiftCard.id).all()
    ]

    for gift_card_id in candidate_ids:
        def _op(gift_card_id=gift_card_id):
            card = _lock_by_id(gift_card_id)
            if card is None or card.status != GIFT_CARD_ACTIVE or not card.expires_at < now:
                return False
            return _expire_card(card, notes="Gift card expired - balance forfeited")

        try:
            if run_atomic(_op, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE):
                expired_count += 1
        except (GiftCardConflictError, IntegrityError):
            current_app.logger.info("Gift card %s changed during expiry sweep; skipped", gift_card_id)

    orphan_ids = [
        row.id
        for row in db.session.query(GiftCard.id).filter(
            GiftCard.status == GIFT_CARD_EXPIRED,
            ~GiftCard.transactions.any(GiftCardTransaction.transaction_type == TXN_EXPIRED),
        ).order_by(GiftCard.id).all()
    ]

    for gift_card_id in orphan_ids:
        def _backfill(gift_card_id=gift_card_id):
            card = _lock_by_id(gift_card_id)
            if card is None or has_transaction(card.id, TXN_EXPIRED):
                return
            forfeited = card.balance_cents
            card.balance_cents = 0
            db.session.flush()
            append_gift_card_transaction(
                gift_card_id=card.id,
                transaction_type=TXN_EXPIRED,
                amount_cents=-forfeited,
                created_by_id=card.purchased_by_id,
                notes="Gift card expired - balance forfeited",
            )

        try:
            run_atomic(_backfill, conflict_error=GiftCardConflictError, conflict_message=CONFLICT_MESSAGE)
        except (GiftCardConflictError, IntegrityError):
            current_app.logger.info("Gift card %s expiry entry written concurrently; skipped", gift_card_id)

    current_app.logger.info("Expiry sweep expired %s gift card(s)", expired_count)
    return expired_count


# =============================================================================
# QUERIES
# =============================================================================

def get_gift_card(code: str) -> GiftCard:
    card = _get_by_code(code)
    if card is None:
        raise GiftCardNotFoundError()
    return card


def check_balance(code: str) -> dict:
    """
    Balance lookup for a redeemable card.

    Raises the validation error (NotFound / InvalidState) if the card
    cannot be used.
    """
    validation = validate_gift_card(code)
    if not validation.valid:
        _raise_for_validation(validation)

    card = validation.gift_card
    return {
        "code": card.code,
        "balance_cents": validation.available_balance_cents,
        "currency": card.currency,
        "status": card.status,
        "expires_at": to_utc_z(card.expires_at),
    }


def get_transaction_history(code: str) -> dict:
    card = get_gift_card(code)
    return {
        "gift_card": card.summary_dict(),
        "transactions": [txn.to_dict() for txn in list_transactions(card.id)],
    }


def get_customer_gift_cards(customer_id: int, include_used: bool = False) -> list[GiftCard]:
    """Cards held by a customer; redeemable ones only unless include_used."""
    query = db.session.query(GiftCard).filter(GiftCard.customer_id == customer_id)
    if not include_used:
        query = query.filter(
            GiftCard.status == GIFT_CARD_ACTIVE,
            GiftCard.balance_cents > 0,
        )
    return query.order_by(GiftCard.issued_at.desc(), GiftCard.id.desc()).all()


def reconcile_gift_card(code: str) -> dict:
    """Compare the stored balance with the balance derived from the ledger."""
    card = get_gift_card(code)
    ledger_cents = ledger_balance_cents(card.id)
    return {
        "code": card.code,
        "balance_cents": card.balance_cents,
        "ledger_balance_cents": ledger_cents,
        "in_balance": card.balance_cents == ledger_cents,
    }
