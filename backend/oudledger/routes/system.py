# Overview: Flask API routes for system health and version; returns JSON responses.

"""
System health and version endpoints.

Health covers the database and the gift card expiry backlog so operators
can tell when the scheduled sweep has stopped running. Each check returns
a (status, payload) pair; `_run_check` times it and turns an exception
into an "unhealthy" entry instead of failing the whole endpoint.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import GiftCard, Material
from ..models.gift_cards import GIFT_CARD_ACTIVE
from oudledger.time_utils import utcnow, to_utc_z

API_VERSION = "1.0.0"

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _run_check(name: str, check, failure_message: str) -> dict:
    started = time.perf_counter()
    try:
        status, payload = check()
    except Exception:
        current_app.logger.exception("Health check %s failed", name)
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": failure_message}
    return {"status": status, "latency_ms": _elapsed_ms(started), **payload}


def _database_check():
    counts = {
        "gift_cards": db.session.query(GiftCard).count(),
        "materials": db.session.query(Material).count(),
    }
    return "healthy", {"details": counts}


def _expiry_backlog_check():
    # ACTIVE cards already past expires_at; validation expires them lazily,
    # so a backlog only degrades health
    pending = db.session.query(GiftCard).filter(
        GiftCard.status == GIFT_CARD_ACTIVE,
        GiftCard.expires_at < utcnow(),
    ).count()

    payload = {"details": {"pending_expiry": pending}}
    if pending:
        payload["warning"] = f"{pending} gift card(s) awaiting expiry sweep"
        return "degraded", payload
    return "healthy", payload


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    started = time.perf_counter()

    checks = {
        "database": _run_check("database", _database_check, "Database error"),
        "gift_card_expiry": _run_check("gift_card_expiry", _expiry_backlog_check, "Gift card ledger error"),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(started),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
