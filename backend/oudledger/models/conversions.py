from __future__ import annotations

from ..extensions import db
from oudledger.services.conversion_engine import (
    MATERIAL_CATEGORIES,
    MATERIAL_GRADES,
    MaterialCategory,
    MaterialGrade,
    MaterialProfile,
)
from oudledger.time_utils import to_utc_z


class Material(db.Model):
    """
    Reference data for density-mediated unit conversion.

    WHY: Oils, attars and alcohol are bought by weight and sold by volume
    (or the reverse). Density at the 20°C baseline bridges the two families;
    temperature_coefficient is the fractional density change per °C.

    READ-ONLY for the conversion engine: it only ever sees to_profile().
    """
    __tablename__ = "materials"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_materials_name"),
        db.CheckConstraint("density > 0", name="density_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    name_ar = db.Column(db.String(128), nullable=True)
    category = db.Column(db.Enum(*MATERIAL_CATEGORIES, name="material_category", native_enum=False), nullable=False)

    density = db.Column(db.Float, nullable=False)  # g/ml at 20°C
    viscosity = db.Column(db.Float, nullable=True)  # cP
    temperature_coefficient = db.Column(db.Float, nullable=True)

    grade = db.Column(db.Enum(*MATERIAL_GRADES, name="material_grade", native_enum=False), nullable=True)
    origin = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_profile(self) -> MaterialProfile:
        return MaterialProfile(
            id=str(self.id),
            name=self.name,
            name_ar=self.name_ar,
            category=MaterialCategory(self.category),
            density=self.density,
            viscosity=self.viscosity,
            temperature_coefficient=self.temperature_coefficient,
            grade=MaterialGrade(self.grade) if self.grade else None,
            origin=self.origin,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "name_ar": self.name_ar,
            "category": self.category,
            "density": self.density,
            "viscosity": self.viscosity,
            "temperature_coefficient": self.temperature_coefficient,
            "grade": self.grade,
            "origin": self.origin,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class UnitConversionRule(db.Model):
    """
    Custom conversion factor, global (material_id NULL) or material-specific.

    WHY: Measured factors for a specific oil beat the density estimate;
    they take precedence over the standard table for that material.
    """
    __tablename__ = "unit_conversion_rules"
    __table_args__ = (
        db.UniqueConstraint("material_id", "from_unit", "to_unit", name="uq_unit_conversion_rules_material_units"),
        db.CheckConstraint("factor > 0", name="factor_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=True, index=True)
    from_unit = db.Column(db.String(32), nullable=False)
    to_unit = db.Column(db.String(32), nullable=False)
    factor = db.Column(db.Float, nullable=False)
    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    material = db.relationship("Material", backref=db.backref("conversion_rules", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "from_unit": self.from_unit,
            "to_unit": self.to_unit,
            "factor": self.factor,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
