# Overview: Service-layer operations for unit conversion; materials, custom rules and engine wiring.

"""
Conversion Service

WHY: The conversion engine is pure; this layer feeds it the materials and
custom rules stored in the database and the per-process history owned by
the Flask app.

DESIGN PRINCIPLES:
- A fresh engine is built per request from current reference data
- Materials are never deleted, only deactivated (is_active)
- History is process-local and bounded (CONVERSION_HISTORY_LIMIT)
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Material, UnitConversionRule
from ..validation import ConflictError
from .conversion_engine import (
    DEFAULT_DENSITY,
    ConversionEngine,
    ConversionHistory,
    CustomConversionRule,
    STANDARD_CONVERSIONS,
    UNIT_FAMILIES,
    UNIT_LABELS,
)


HISTORY_EXTENSION_KEY = "conversion_history"


class MaterialNotFoundError(Exception):
    """Raised when a referenced material does not exist."""
    pass


# Reference materials at 20°C; temperature coefficients are fractional density change per °C
DEFAULT_MATERIALS = [
    {
        "name": "Royal Oud Oil",
        "name_ar": "دهن العود الملكي",
        "category": "oud_oil",
        "density": 0.85,
        "viscosity": 45.0,
        "temperature_coefficient": -0.0007,
        "grade": "royal",
        "origin": "Cambodia",
    },
    {
        "name": "Premium Oud Oil",
        "name_ar": "دهن العود الممتاز",
        "category": "oud_oil",
        "density": 0.87,
        "viscosity": 50.0,
        "temperature_coefficient": -0.0007,
        "grade": "premium",
        "origin": "India",
    },
    {
        "name": "Rose Attar",
        "name_ar": "عطر الورد",
        "category": "attar",
        "density": 0.88,
        "viscosity": 35.0,
        "temperature_coefficient": -0.0008,
        "grade": "premium",
        "origin": "Taif",
    },
    {
        "name": "Sandalwood Oil",
        "name_ar": "زيت الصندل",
        "category": "attar",
        "density": 0.92,
        "viscosity": 60.0,
        "temperature_coefficient": -0.0006,
        "grade": "premium",
        "origin": "Mysore",
    },
    {
        "name": "Ethyl Alcohol",
        "name_ar": "الكحول الإيثيلي",
        "category": "alcohol",
        "density": 0.789,
        "viscosity": 1.2,
        "temperature_coefficient": -0.00108,
    },
    {
        "name": "Distilled Water",
        "name_ar": "الماء المقطر",
        "category": "water",
        "density": 0.998,
        "viscosity": 1.0,
        "temperature_coefficient": -0.0002,
    },
]


# =============================================================================
# MATERIALS
# =============================================================================

def list_materials(include_inactive: bool = False) -> list[Material]:
    query = db.session.query(Material)
    if not include_inactive:
        query = query.filter(Material.is_active.is_(True))
    return query.order_by(Material.name.asc()).all()


def get_material(material_id: int) -> Material:
    material = db.session.query(Material).filter_by(id=material_id).first()
    if material is None:
        raise MaterialNotFoundError(f"Material {material_id} not found")
    return material


def create_material(*, patch: dict) -> Material:
    """
    Create a material from a validated patch.

    Raises:
        ConflictError: If a material with the same name exists
    """
    name = patch.get("name")
    if not name:
        raise ValueError("name is required")

    existing = db.session.query(Material).filter(Material.name == name).first()
    if existing:
        raise ConflictError(f"Material '{name}' already exists.")

    material = Material(**patch)
    db.session.add(material)
    db.session.commit()

    current_app.logger.info("Created material %s (density %s g/ml)", material.name, material.density)
    return material


def seed_default_materials() -> int:
    """
    Insert the reference materials that are missing by name.

    Idempotent. Returns the number of materials created.
    """
    existing = {name for (name,) in db.session.query(Material.name).all()}
    created = 0
    for data in DEFAULT_MATERIALS:
        if data["name"] in existing:
            continue
        db.session.add(Material(**data))
        created += 1
    db.session.commit()
    return created


# =============================================================================
# CUSTOM RULES
# =============================================================================

def list_conversion_rules(material_id: int | None = None) -> list[UnitConversionRule]:
    query = db.session.query(UnitConversionRule)
    if material_id is not None:
        query = query.filter(UnitConversionRule.material_id == material_id)
    return query.order_by(UnitConversionRule.id.asc()).all()


def create_conversion_rule(*, patch: dict) -> UnitConversionRule:
    """
    Create a custom factor, global or scoped to one material.

    Raises:
        MaterialNotFoundError: Unknown material_id
        ConflictError: Same (material, from_unit, to_unit) already defined
    """
    material_id = patch.get("material_id")
    if material_id is not None:
        get_material(material_id)

    existing = db.session.query(UnitConversionRule).filter(
        UnitConversionRule.material_id.is_(None) if material_id is None
        else UnitConversionRule.material_id == material_id,
        UnitConversionRule.from_unit == patch.get("from_unit"),
        UnitConversionRule.to_unit == patch.get("to_unit"),
    ).first()
    if existing:
        raise ConflictError("A conversion rule for these units already exists.")

    rule = UnitConversionRule(**patch)
    db.session.add(rule)
    db.session.commit()
    return rule


# =============================================================================
# ENGINE WIRING
# =============================================================================

def get_conversion_history() -> ConversionHistory:
    """Process-local history registered on the app by create_app."""
    history = current_app.extensions.get(HISTORY_EXTENSION_KEY)
    if history is None:
        history = ConversionHistory(limit=current_app.config.get("CONVERSION_HISTORY_LIMIT", 100))
        current_app.extensions[HISTORY_EXTENSION_KEY] = history
    return history


def build_engine(*, with_history: bool = True) -> ConversionEngine:
    """Engine over the active materials and all stored custom rules."""
    materials = {str(m.id): m.to_profile() for m in list_materials()}
    rules = [
        CustomConversionRule(
            from_unit=rule.from_unit,
            to_unit=rule.to_unit,
            factor=rule.factor,
            material_id=str(rule.material_id) if rule.material_id is not None else None,
            notes=rule.notes,
        )
        for rule in list_conversion_rules()
    ]
    return ConversionEngine(
        conversions=STANDARD_CONVERSIONS,
        materials=materials,
        custom_rules=rules,
        default_density=current_app.config.get("CONVERSION_DEFAULT_DENSITY", DEFAULT_DENSITY),
        history=get_conversion_history() if with_history else None,
    )


def list_units() -> dict:
    """Supported units grouped by family, with bilingual labels."""
    return {
        family.value: [
            {"unit": unit, "label": UNIT_LABELS[unit]["en"], "label_ar": UNIT_LABELS[unit]["ar"]}
            for unit in units
        ]
        for family, units in UNIT_FAMILIES.items()
    }
