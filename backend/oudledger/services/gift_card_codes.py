# Overview: Gift card code generation and format checks.

"""
Gift card codes

FORMAT: PO-XXXX-XXXX-XXXX
- 8 cryptographically random bytes -> 16 uppercase hex digits
- The first 12 digits are grouped in fours after the "PO" prefix

Uniqueness is enforced by the gift_cards.code UNIQUE constraint, not here.
"""

from __future__ import annotations

import re
import secrets
from typing import Callable

CODE_PREFIX = "PO"  # Perfume & Oud
RANDOM_BYTES = 8

GIFT_CARD_CODE_RE = re.compile(r"^PO-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}$")


def generate_gift_card_code(randbytes: Callable[[int], bytes] = secrets.token_bytes) -> str:
    """
    Generate a new gift card code.

    randbytes defaults to the OS CSPRNG; tests pass a seeded source
    such as random.Random(seed).randbytes.
    """
    digits = randbytes(RANDOM_BYTES).hex().upper()
    return f"{CODE_PREFIX}-{digits[0:4]}-{digits[4:8]}-{digits[8:12]}"


def normalize_code(value: str) -> str:
    """Normalize scanned/typed input: uppercase, no surrounding whitespace."""
    return (value or "").strip().upper()


def is_valid_code_format(value: str) -> bool:
    return bool(GIFT_CARD_CODE_RE.match(value or ""))
