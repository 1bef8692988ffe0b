# Overview: Flask API routes for unit conversion and conversion reference data; returns JSON responses.

"""
Unit conversion routes.

Conversions themselves are stateless apart from the process-local history.
Creating materials and rules requires an acting staff user (@require_actor).
"""

from flask import Blueprint, Response, current_app, jsonify, request

from ..decorators import require_actor
from ..models import Material, UnitConversionRule
from ..services import conversion_service
from ..services.conversion_engine import ConversionError, export_results_csv
from ..services.conversion_service import MaterialNotFoundError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_conversion_rule,
    enforce_rules_material,
    validate_payload,
)

MATERIAL_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "name_ar",
        "category",
        "density",
        "viscosity",
        "temperature_coefficient",
        "grade",
        "origin",
        "notes",
        "is_active",
    },
    required_on_create={"name", "category", "density"},
)

RULE_POLICY = ModelValidationPolicy(
    writable_fields={"material_id", "from_unit", "to_unit", "factor", "notes"},
    required_on_create={"from_unit", "to_unit", "factor"},
)

conversions_bp = Blueprint("conversions", __name__, url_prefix="/api/conversions")


def _optional_float(data: dict, key: str) -> float | None:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ConversionError(f"{key} must be a number")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConversionError(f"{key} must be a number")


def _conversion_options(data: dict) -> dict:
    """Engine keyword options shared by single, batch and export conversions."""
    material_id = data.get("material_id")
    return {
        "material_id": str(material_id) if material_id not in (None, "") else None,
        "custom_density": _optional_float(data, "custom_density"),
        "temperature": _optional_float(data, "temperature"),
        "use_temperature_adjustment": bool(data.get("use_temperature_adjustment", False)),
    }


@conversions_bp.post("/convert")
def convert_route():
    """
    Convert a single value.

    Body:
    - value: number (required)
    - from_unit, to_unit: unit names (required)
    - material_id, custom_density, temperature, use_temperature_adjustment: optional
    """
    data = request.get_json(silent=True) or {}
    from_unit = data.get("from_unit")
    to_unit = data.get("to_unit")
    if "value" not in data or not from_unit or not to_unit:
        return jsonify({"error": "value, from_unit and to_unit are required"}), 400

    try:
        engine = conversion_service.build_engine()
        result = engine.convert(data.get("value"), from_unit, to_unit, **_conversion_options(data))
    except ConversionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to convert units")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@conversions_bp.post("/batch")
def batch_convert_route():
    """
    Convert many lines at once.

    Body:
    - text: newline-delimited "<value> <from_unit> [to] <to_unit>" lines
    - material_id, custom_density, temperature, use_temperature_adjustment: optional
    """
    data = request.get_json(silent=True) or {}
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return jsonify({"error": "text is required"}), 400

    try:
        engine = conversion_service.build_engine(with_history=False)
        batch = engine.convert_batch(text, **_conversion_options(data))
    except ConversionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to batch convert units")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(batch.to_dict()), 200


@conversions_bp.post("/export")
def export_route():
    """Batch-convert `text` (same body as /batch) and return the results as CSV."""
    data = request.get_json(silent=True) or {}
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return jsonify({"error": "text is required"}), 400

    try:
        engine = conversion_service.build_engine(with_history=False)
        batch = engine.convert_batch(text, **_conversion_options(data))
    except ConversionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to export conversions")
        return jsonify({"error": "Internal server error"}), 500

    return Response(
        export_results_csv(batch.results),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=conversions.csv"},
    )


@conversions_bp.get("/history")
def history_route():
    entries = conversion_service.get_conversion_history().entries()
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@conversions_bp.delete("/history")
@require_actor
def clear_history_route():
    conversion_service.get_conversion_history().clear()
    return jsonify({"ok": True}), 200


@conversions_bp.get("/units")
def units_route():
    return jsonify({"units": conversion_service.list_units()}), 200


@conversions_bp.get("/materials")
def list_materials_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    materials = conversion_service.list_materials(include_inactive=include_inactive)
    return jsonify({"items": [m.to_dict() for m in materials], "count": len(materials)}), 200


@conversions_bp.post("/materials")
@require_actor
def create_material_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Material, payload=payload, policy=MATERIAL_POLICY, partial=False)
        enforce_rules_material(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        material = conversion_service.create_material(patch=patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"material": material.to_dict()}), 201


@conversions_bp.get("/rules")
def list_rules_route():
    material_id = request.args.get("material_id", type=int)
    rules = conversion_service.list_conversion_rules(material_id=material_id)
    return jsonify({"items": [r.to_dict() for r in rules], "count": len(rules)}), 200


@conversions_bp.post("/rules")
@require_actor
def create_rule_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=UnitConversionRule, payload=payload, policy=RULE_POLICY, partial=False)
        enforce_rules_conversion_rule(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        rule = conversion_service.create_conversion_rule(patch=patch)
    except MaterialNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify({"rule": rule.to_dict()}), 201
