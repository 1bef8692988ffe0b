# Overview: QR envelope encoding and validation for gift cards.

"""
Gift card QR envelope

ENVELOPE (JSON):
{
    "type": "gift_card",
    "code": "PO-1A2B-3C4D-5E6F",
    "amount": 100.0,          (major units)
    "currency": "AED",
    "issuer": "Perfume & Oud",
    "timestamp": "2026-01-01T10:00:00Z"
}

Encoding renders the envelope as a PNG data URL. Decoding only checks the
scanned text against the envelope schema; a bad payload is an
InvalidQRPayloadError, never a crash.
"""

from __future__ import annotations

import base64
import io
import json
from datetime import datetime

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .gift_card_codes import CODE_PREFIX
from oudledger.time_utils import utcnow, to_utc_z

ENVELOPE_TYPE = "gift_card"

# Oud theme: dark brown on cream
QR_DARK = "#2D1810"
QR_LIGHT = "#F8F6F0"


class InvalidQRPayloadError(ValueError):
    """Raised when a scanned payload is not a gift card envelope we issued."""


def build_envelope(
    *,
    code: str,
    amount_cents: int,
    currency: str,
    issuer: str,
    timestamp: datetime | None = None,
) -> dict:
    return {
        "type": ENVELOPE_TYPE,
        "code": code,
        "amount": amount_cents / 100,
        "currency": currency,
        "issuer": issuer,
        "timestamp": to_utc_z(timestamp or utcnow()),
    }


def render_qr_data_url(envelope: dict) -> str:
    """Render the envelope as a "data:image/png;base64,..." string."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=6, border=1)
    qr.add_data(json.dumps(envelope, ensure_ascii=False))
    qr.make(fit=True)
    img = qr.make_image(fill_color=QR_DARK, back_color=QR_LIGHT)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_qr_payload(payload: str, *, issuer: str) -> dict:
    """
    Validate scanned QR text and return the envelope.

    Raises:
        InvalidQRPayloadError: Not JSON, wrong type, bad code prefix, or foreign issuer
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        raise InvalidQRPayloadError("Invalid QR code format")

    if not isinstance(data, dict):
        raise InvalidQRPayloadError("Invalid QR code format")

    if data.get("type") != ENVELOPE_TYPE:
        raise InvalidQRPayloadError("Invalid QR code type")

    code = data.get("code")
    if not isinstance(code, str) or not code.startswith(CODE_PREFIX):
        raise InvalidQRPayloadError("Invalid gift card code format")

    if data.get("issuer") != issuer:
        raise InvalidQRPayloadError(f"QR code not issued by {issuer}")

    return data
