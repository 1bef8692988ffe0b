# Overview: Flask API routes for gift card operations; parses input and returns JSON responses.

"""
Gift card routes.

Write operations require an acting staff user (@require_actor, X-User-Id);
the actor is recorded on every ledger entry the request appends.

ERROR MAPPING:
- 404: unknown code
- 409: card state forbids the operation, insufficient balance, already
       cancelled, or the card changed concurrently
- 400: malformed input (amounts, credit type, QR payload, template)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..models import GiftCard
from ..services import gift_card_service
from ..services.gift_card_service import (
    GiftCardAlreadyCancelledError,
    GiftCardConflictError,
    GiftCardError,
    GiftCardInvalidStateError,
    GiftCardNotFoundError,
    InsufficientBalanceError,
)
from ..services.qr_service import InvalidQRPayloadError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_gift_card,
    validate_payload,
)

ISSUE_POLICY = ModelValidationPolicy(
    writable_fields={
        "amount_cents",
        "currency",
        "customer_id",
        "expires_at",
        "notes",
        "recipient_name",
        "recipient_name_ar",
        "message",
        "message_ar",
    },
    required_on_create={"amount_cents"},
)

gift_cards_bp = Blueprint("gift_cards", __name__, url_prefix="/api/gift-cards")


def _gift_card_error(e: GiftCardError):
    """Map a gift card service error to a JSON error response."""
    if isinstance(e, GiftCardNotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, InsufficientBalanceError):
        return jsonify({"error": str(e), "available_cents": e.available_cents}), 409
    if isinstance(e, GiftCardInvalidStateError):
        return jsonify({"error": str(e), "status": e.status}), 409
    if isinstance(e, (GiftCardAlreadyCancelledError, GiftCardConflictError)):
        return jsonify({"error": str(e)}), 409
    return jsonify({"error": str(e)}), 400


@gift_cards_bp.post("")
@require_actor
def issue_gift_card_route():
    """
    Issue a gift card.

    Body:
    - amount_cents: int (required, > 0)
    - currency, customer_id, expires_at (ISO-8601), notes
    - recipient_name, recipient_name_ar, message, message_ar
    - template: greeting template key (optional)

    Returns the card including its QR data URL.
    """
    payload = dict(request.get_json(silent=True) or {})
    template = payload.pop("template", None)

    try:
        patch = validate_payload(model=GiftCard, payload=payload, policy=ISSUE_POLICY, partial=False)
        enforce_rules_gift_card(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        card = gift_card_service.issue_gift_card(
            purchased_by_id=g.actor_id,
            template=template,
            **patch,
        )
    except GiftCardError as e:
        return _gift_card_error(e)
    except Exception:
        current_app.logger.exception("Failed to issue gift card")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"gift_card": card.to_dict(include_qr=True)}), 201


@gift_cards_bp.get("/templates")
def list_templates():
    return jsonify({"templates": gift_card_service.get_gift_card_templates()}), 200


@gift_cards_bp.post("/expire")
@require_actor
def expire_gift_cards_route():
    """Run the expiry sweep now (normally scheduled via `flask giftcards expire`)."""
    try:
        expired = gift_card_service.expire_old_gift_cards()
    except Exception:
        current_app.logger.exception("Gift card expiry sweep failed")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"expired": expired}), 200


@gift_cards_bp.post("/qr/validate")
def validate_qr_route():
    """
    Validate a scanned QR payload.

    Body:
    - payload: the raw text read from the QR code
    """
    data = request.get_json(silent=True) or {}
    raw = data.get("payload")
    if not raw or not isinstance(raw, str):
        return jsonify({"error": "payload is required"}), 400

    try:
        validation = gift_card_service.validate_qr_payload(raw)
    except InvalidQRPayloadError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(validation.to_dict()), 200


@gift_cards_bp.get("/customers/<int:customer_id>")
def customer_gift_cards(customer_id: int):
    """
    List a customer's gift cards.

    Query params:
    - include_used: "true" to include used/expired/cancelled cards
    """
    include_used = request.args.get("include_used", "false").lower() == "true"
    cards = gift_card_service.get_customer_gift_cards(customer_id, include_used=include_used)
    return jsonify({"items": [c.to_dict() for c in cards], "count": len(cards)}), 200


@gift_cards_bp.get("/<code>/validate")
def validate_gift_card_route(code: str):
    """Validation result; an invalid card is still a 200 with valid=false."""
    validation = gift_card_service.validate_gift_card(code)
    return jsonify(validation.to_dict()), 200


@gift_cards_bp.post("/<code>/redeem")
@require_actor
def redeem_gift_card_route(code: str):
    """
    Redeem against a card.

    Body:
    - amount_cents: int (required, > 0)
    - order_id: external order reference (optional)
    - notes: optional
    """
    data = request.get_json(silent=True) or {}

    try:
        result = gift_card_service.redeem_gift_card(
            code=code,
            amount_cents=data.get("amount_cents"),
            order_id=data.get("order_id"),
            notes=data.get("notes"),
            created_by_id=g.actor_id,
        )
    except GiftCardError as e:
        return _gift_card_error(e)
    except Exception:
        current_app.logger.exception("Failed to redeem gift card")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@gift_cards_bp.post("/<code>/credit")
@require_actor
def credit_gift_card_route(code: str):
    """
    Add balance to a card.

    Body:
    - amount_cents: int (required, > 0)
    - transaction_type: BONUS | ADDED | REFUNDED (default ADDED)
    - notes: optional
    - allow_reactivation: bool, required to credit a USED card

    CANCELLED and EXPIRED cards are refused with 409 even when
    allow_reactivation is set: an expired card already carries its single
    EXPIRED ledger entry, so it cannot return to ACTIVE.
    """
    data = request.get_json(silent=True) or {}

    try:
        card = gift_card_service.add_balance(
            code=code,
            amount_cents=data.get("amount_cents"),
            transaction_type=data.get("transaction_type") or "ADDED",
            created_by_id=g.actor_id,
            notes=data.get("notes"),
            allow_reactivation=bool(data.get("allow_reactivation", False)),
        )
    except GiftCardError as e:
        return _gift_card_error(e)
    except Exception:
        current_app.logger.exception("Failed to credit gift card")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"gift_card": card.to_dict()}), 200


@gift_cards_bp.get("/<code>/balance")
def gift_card_balance(code: str):
    try:
        return jsonify(gift_card_service.check_balance(code)), 200
    except GiftCardError as e:
        return _gift_card_error(e)


@gift_cards_bp.get("/<code>/transactions")
def gift_card_transactions(code: str):
    try:
        return jsonify(gift_card_service.get_transaction_history(code)), 200
    except GiftCardError as e:
        return _gift_card_error(e)


@gift_cards_bp.get("/<code>/reconcile")
def reconcile_gift_card_route(code: str):
    try:
        return jsonify(gift_card_service.reconcile_gift_card(code)), 200
    except GiftCardError as e:
        return _gift_card_error(e)


@gift_cards_bp.post("/<code>/cancel")
@require_actor
def cancel_gift_card_route(code: str):
    """
    Cancel a card.

    Body:
    - reason: string (required)
    """
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "reason is required"}), 400

    try:
        card = gift_card_service.cancel_gift_card(code=code, reason=reason, created_by_id=g.actor_id)
    except GiftCardError as e:
        return _gift_card_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel gift card")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"gift_card": card.to_dict()}), 200
