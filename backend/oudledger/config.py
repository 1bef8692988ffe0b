# backend/oudledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/oudledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///oudledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Gift cards
    GIFT_CARD_ISSUER = os.environ.get("GIFT_CARD_ISSUER", "Perfume & Oud")
    GIFT_CARD_DEFAULT_CURRENCY = os.environ.get("GIFT_CARD_DEFAULT_CURRENCY", "AED")
    GIFT_CARD_VALIDITY_YEARS = int(os.environ.get("GIFT_CARD_VALIDITY_YEARS", "2"))

    # Unit conversion
    CONVERSION_DEFAULT_DENSITY = float(os.environ.get("CONVERSION_DEFAULT_DENSITY", "0.85"))
    CONVERSION_HISTORY_LIMIT = int(os.environ.get("CONVERSION_HISTORY_LIMIT", "100"))

    # Browser clients (POS terminal UI dev/preview servers by default)
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    ]
