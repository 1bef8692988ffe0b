# Overview: Flask API routes for reporting; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from oudledger.services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/gift-cards")
def gift_card_report():
    """
    Gift card activity report.

    Query params:
    - start: ISO-8601 datetime (required)
    - end: ISO-8601 datetime (required)
    """
    start = request.args.get("start")
    end = request.args.get("end")

    try:
        report = reporting_service.gift_card_report(start=start, end=end)
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to build gift card report")
        return jsonify({"error": "Internal server error"}), 500
