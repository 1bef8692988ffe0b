# Overview: Pure unit conversion engine for weight, volume and count units; no database access.

"""
Unit Conversion Engine

WHY: Oud oils and attars are bought by weight (tola, gram) and decanted and
sold by volume (ml), while packaging is counted (piece, box, case). The POS
and inventory tooling need one place that turns any of these into any other.

RESOLUTION ORDER (first match wins):
0. Same unit: factor 1
1. Rule stored for the selected material (skipped when no material is given)
2. Direct factor from the conversion table
3. Reverse factor (reciprocal of the table entry)
4. Density: volume <-> weight through ml and gram, optionally temperature adjusted
5. Global rule (never overrides the table or density)
6. Compound: chain through a pivot unit (gram, then ml)
7. NoConversionPathError

DESIGN PRINCIPLES:
- The engine is pure. Tables, materials, rules and history are injected.
- Materials are immutable MaterialProfile records keyed by id.
- History is bounded and owned by the caller.
"""

from __future__ import annotations

import csv
import io
import math
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping

from oudledger.time_utils import utcnow, to_utc_z


class ConversionError(Exception):
    """Raised for conversion input errors."""
    pass


class NoConversionPathError(ConversionError):
    """Raised when no rule, table entry, density or pivot bridges two units."""

    def __init__(self, from_unit: str, to_unit: str):
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(f"No conversion path found from {from_unit} to {to_unit}")


# =============================================================================
# UNITS
# =============================================================================

class UnitFamily(str, Enum):
    WEIGHT = "weight"
    VOLUME = "volume"
    COUNT = "count"


# Size of one unit in its family's base unit (gram, ml, piece).
# 1 tola = 11.66 g; box = 10 pieces and case = 100 pieces are fixed packaging sizes.
UNIT_SIZES: dict[UnitFamily, dict[str, float]] = {
    UnitFamily.WEIGHT: {
        "gram": 1.0,
        "kilogram": 1000.0,
        "tola": 11.66,
        "pound": 453.592,
        "ounce": 28.3495,
    },
    UnitFamily.VOLUME: {
        "ml": 1.0,
        "liter": 1000.0,
        "gallon": 3785.41,
        "fluid_ounce": 29.5735,
        "cup": 236.588,
    },
    UnitFamily.COUNT: {
        "piece": 1.0,
        "dozen": 12.0,
        "box": 10.0,
        "case": 100.0,
    },
}

UNIT_FAMILIES: dict[UnitFamily, list[str]] = {family: list(sizes) for family, sizes in UNIT_SIZES.items()}

UNIT_LABELS: dict[str, dict[str, str]] = {
    "gram": {"en": "Gram (g)", "ar": "جرام (ج)"},
    "kilogram": {"en": "Kilogram (kg)", "ar": "كيلوجرام (كج)"},
    "tola": {"en": "Tola", "ar": "تولة"},
    "pound": {"en": "Pound (lb)", "ar": "باوند (رطل)"},
    "ounce": {"en": "Ounce (oz)", "ar": "أونصة (أوز)"},
    "ml": {"en": "Milliliter (ml)", "ar": "مليلتر (مل)"},
    "liter": {"en": "Liter (L)", "ar": "لتر (ل)"},
    "gallon": {"en": "Gallon (gal)", "ar": "جالون"},
    "fluid_ounce": {"en": "Fluid Ounce (fl oz)", "ar": "أونصة سائلة"},
    "cup": {"en": "Cup", "ar": "كوب"},
    "piece": {"en": "Piece (pc)", "ar": "قطعة (ق)"},
    "dozen": {"en": "Dozen (dz)", "ar": "دزينة (دز)"},
    "box": {"en": "Box", "ar": "صندوق"},
    "case": {"en": "Case", "ar": "كرتونة"},
}


def build_conversion_table(unit_sizes: Mapping[UnitFamily, Mapping[str, float]]) -> dict[str, dict[str, float]]:
    """
    Expand per-family unit sizes into a from -> to factor table.

    Every pair within a family is tabulated, so factor[a][b] * factor[b][a] == 1
    up to float rounding.
    """
    table: dict[str, dict[str, float]] = {}
    for sizes in unit_sizes.values():
        for from_unit, from_size in sizes.items():
            row = table.setdefault(from_unit, {})
            for to_unit, to_size in sizes.items():
                if to_unit != from_unit:
                    row[to_unit] = from_size / to_size
    return table


STANDARD_CONVERSIONS = build_conversion_table(UNIT_SIZES)


def unit_family(unit: str) -> UnitFamily | None:
    for family, units in UNIT_FAMILIES.items():
        if unit in units:
            return family
    return None


# =============================================================================
# MATERIALS
# =============================================================================

class MaterialCategory(str, Enum):
    OUD_OIL = "oud_oil"
    OUD_CHIPS = "oud_chips"
    BAKHOOR = "bakhoor"
    PERFUME = "perfume"
    ATTAR = "attar"
    ALCOHOL = "alcohol"
    WATER = "water"
    RAW_MATERIAL = "raw_material"


class MaterialGrade(str, Enum):
    ROYAL = "royal"
    PREMIUM = "premium"
    SUPER = "super"
    REGULAR = "regular"


MATERIAL_CATEGORIES = [c.value for c in MaterialCategory]
MATERIAL_GRADES = [g.value for g in MaterialGrade]


@dataclass(frozen=True)
class MaterialProfile:
    """Immutable material record as seen by the engine."""
    id: str
    name: str
    category: MaterialCategory
    density: float  # g/ml at BASE_TEMPERATURE_C
    name_ar: str | None = None
    viscosity: float | None = None
    temperature_coefficient: float | None = None  # fractional density change per °C
    grade: MaterialGrade | None = None
    origin: str | None = None


@dataclass(frozen=True)
class CustomConversionRule:
    from_unit: str
    to_unit: str
    factor: float
    material_id: str | None = None
    notes: str | None = None


BASE_TEMPERATURE_C = 20.0
DEFAULT_DENSITY = 0.85
COMPOUND_PIVOTS = ("gram", "ml")

LARGE_RESULT_THRESHOLD = 1_000_000
SMALL_RESULT_THRESHOLD = 0.001

DEFAULT_DENSITY_WARNING = "Using default density. Select a material or specify custom density for better accuracy."
LARGE_RESULT_WARNING = "Result is very large. Please verify the conversion is correct."
SMALL_RESULT_WARNING = "Result is very small. Consider using a different unit."


def adjust_density_for_temperature(
    base_density: float,
    coefficient: float,
    current_temp: float,
    base_temp: float = BASE_TEMPERATURE_C,
) -> float:
    return base_density * (1 + coefficient * (current_temp - base_temp))


# =============================================================================
# RESULTS
# =============================================================================

METHOD_DIRECT = "direct"
METHOD_STANDARD = "standard"
METHOD_MATERIAL_SPECIFIC = "material_specific"
METHOD_DENSITY = "density"
METHOD_TEMPERATURE_ADJUSTED = "temperature_adjusted"
METHOD_COMPOUND = "compound"
METHOD_CUSTOM = "custom"

ACCURACY_HIGH = "high"
ACCURACY_MEDIUM = "medium"
ACCURACY_ESTIMATED = "estimated"


@dataclass
class ConversionResult:
    original_value: float
    converted_value: float
    from_unit: str
    to_unit: str
    factor: float
    method: str
    formula: str
    accuracy: str
    notes: str = ""
    warnings: list[str] = field(default_factory=list)
    temperature: float | None = None
    density: float | None = None
    material_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "original_value": self.original_value,
            "converted_value": self.converted_value,
            "from_unit": self.from_unit,
            "to_unit": self.to_unit,
            "factor": self.factor,
            "method": self.method,
            "formula": self.formula,
            "accuracy": self.accuracy,
            "notes": self.notes,
            "warnings": list(self.warnings),
            "temperature": self.temperature,
            "density": self.density,
            "material_id": self.material_id,
        }


@dataclass(frozen=True)
class ConversionHistoryEntry:
    id: str
    timestamp: datetime
    from_value: float
    from_unit: str
    to_value: float
    to_unit: str
    method: str
    material_id: str | None = None
    temperature: float | None = None
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": to_utc_z(self.timestamp),
            "from_value": self.from_value,
            "from_unit": self.from_unit,
            "to_value": self.to_value,
            "to_unit": self.to_unit,
            "method": self.method,
            "material_id": self.material_id,
            "temperature": self.temperature,
            "notes": self.notes,
        }


class ConversionHistory:
    """Bounded, most-recent-first log of single conversions."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._entries: deque[ConversionHistoryEntry] = deque(maxlen=limit)

    def record(self, result: ConversionResult) -> ConversionHistoryEntry:
        entry = ConversionHistoryEntry(
            id=uuid.uuid4().hex,
            timestamp=utcnow(),
            from_value=result.original_value,
            from_unit=result.from_unit,
            to_value=result.converted_value,
            to_unit=result.to_unit,
            method=result.method,
            material_id=result.material_id,
            temperature=result.temperature,
            notes=result.notes,
        )
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> list[ConversionHistoryEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class SkippedLine:
    line_number: int
    line: str
    reason: str

    def to_dict(self) -> dict:
        return {"line_number": self.line_number, "line": self.line, "reason": self.reason}


@dataclass
class BatchConversionResult:
    results: list[ConversionResult] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "skipped": [s.to_dict() for s in self.skipped],
        }


@dataclass
class _Resolution:
    factor: float
    method: str
    formula: str
    accuracy: str
    notes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    density: float | None = None


def _num(x: float) -> str:
    return f"{x:g}"


# =============================================================================
# ENGINE
# =============================================================================

class ConversionEngine:
    def __init__(
        self,
        conversions: Mapping[str, Mapping[str, float]] | None = None,
        materials: Mapping[str, MaterialProfile] | None = None,
        custom_rules: Iterable[CustomConversionRule] = (),
        default_density: float = DEFAULT_DENSITY,
        history: ConversionHistory | None = None,
    ):
        self.conversions = conversions if conversions is not None else STANDARD_CONVERSIONS
        self.materials = {str(k): v for k, v in (materials or {}).items()}
        self.custom_rules = {
            (rule.material_id, rule.from_unit, rule.to_unit): rule for rule in custom_rules
        }
        self.default_density = default_density
        self.history = history

    # -------------------------------------------------------------------------
    # Table lookups
    # -------------------------------------------------------------------------

    def direct_factor(self, from_unit: str, to_unit: str) -> float | None:
        return self.conversions.get(from_unit, {}).get(to_unit) or None

    def reverse_factor(self, from_unit: str, to_unit: str) -> float | None:
        forward = self.conversions.get(to_unit, {}).get(from_unit)
        return 1 / forward if forward else None

    def table_factor(self, from_unit: str, to_unit: str) -> float | None:
        factor = self.direct_factor(from_unit, to_unit)
        if factor is None:
            factor = self.reverse_factor(from_unit, to_unit)
        return factor

    def _pivot_factor(self, unit: str, pivot: str) -> float | None:
        if unit == pivot:
            return 1.0
        return self.table_factor(unit, pivot)

    def _resolve_material(self, material_id) -> MaterialProfile | None:
        if material_id is None or material_id == "":
            return None
        material = self.materials.get(str(material_id))
        if material is None:
            raise ConversionError(f"Material {material_id} not found")
        return material

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def convert(
        self,
        value: float,
        from_unit: str,
        to_unit: str,
        *,
        material_id=None,
        custom_density: float | None = None,
        temperature: float | None = None,
        use_temperature_adjustment: bool = False,
        record: bool = True,
    ) -> ConversionResult:
        """
        Convert value from from_unit to to_unit.

        Args:
            material_id: Material whose density (and custom rules) apply
            custom_density: g/ml, used when no material is given
            temperature: °C, only used with use_temperature_adjustment
            record: Append to the attached history (single conversions only)

        Raises:
            NoConversionPathError: No path between the two units
            ConversionError: Unknown material or invalid density
        """
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ConversionError("Value must be a number")
        if not math.isfinite(value):
            raise ConversionError("Value must be a finite number")
        if custom_density is not None and custom_density <= 0:
            raise ConversionError("Density must be greater than 0")

        material = self._resolve_material(material_id)
        current_temp = BASE_TEMPERATURE_C if temperature is None else float(temperature)

        resolution = self._resolve(
            value,
            from_unit,
            to_unit,
            material=material,
            custom_density=custom_density,
            current_temp=current_temp,
            use_temperature_adjustment=use_temperature_adjustment,
        )

        converted = value * resolution.factor
        warnings = list(resolution.warnings)
        if abs(converted) > LARGE_RESULT_THRESHOLD:
            warnings.append(LARGE_RESULT_WARNING)
        if 0 < abs(converted) < SMALL_RESULT_THRESHOLD:
            warnings.append(SMALL_RESULT_WARNING)

        result = ConversionResult(
            original_value=value,
            converted_value=converted,
            from_unit=from_unit,
            to_unit=to_unit,
            factor=resolution.factor,
            method=resolution.method,
            formula=resolution.formula,
            accuracy=resolution.accuracy,
            notes=" ".join(resolution.notes),
            warnings=warnings,
            temperature=current_temp if use_temperature_adjustment else None,
            density=resolution.density,
            material_id=material.id if material else None,
        )

        if record and self.history is not None:
            self.history.record(result)

        return result

    def convert_batch(self, text: str, **options) -> BatchConversionResult:
        """
        Convert newline-delimited "<value> <from_unit> [to] <to_unit>" lines.

        Each line is independent; malformed or unconvertible lines are
        reported in `skipped` and never abort the batch.
        """
        batch = BatchConversionResult()
        for line_number, raw in enumerate((text or "").splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue

            parts = line.split()
            if len(parts) not in (3, 4) or (len(parts) == 4 and parts[2].lower() != "to"):
                batch.skipped.append(SkippedLine(line_number, line, "Expected '<value> <from_unit> [to] <to_unit>'"))
                continue

            try:
                value = float(parts[0])
            except ValueError:
                batch.skipped.append(SkippedLine(line_number, line, f"Invalid number: {parts[0]}"))
                continue

            try:
                result = self.convert(value, parts[1], parts[-1], record=False, **options)
            except ConversionError as exc:
                batch.skipped.append(SkippedLine(line_number, line, str(exc)))
                continue

            batch.results.append(result)
        return batch

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _resolve(
        self,
        value: float,
        from_unit: str,
        to_unit: str,
        *,
        material: MaterialProfile | None,
        custom_density: float | None,
        current_temp: float,
        use_temperature_adjustment: bool,
    ) -> _Resolution:
        if from_unit == to_unit:
            return _Resolution(
                factor=1.0,
                method=METHOD_DIRECT,
                formula=f"{_num(value)} {from_unit} = {_num(value)} {to_unit}",
                accuracy=ACCURACY_HIGH,
            )

        # A rule measured for the selected material beats the standard table
        rule = self._material_rule(material, from_unit, to_unit)
        if rule is not None:
            return self._rule_resolution(value, rule, METHOD_MATERIAL_SPECIFIC)

        factor = self.direct_factor(from_unit, to_unit)
        if factor is not None:
            return _Resolution(
                factor=factor,
                method=METHOD_STANDARD,
                formula=f"{_num(value)} {from_unit} × {_num(factor)} = {value * factor:.4f} {to_unit}",
                accuracy=ACCURACY_HIGH,
            )

        forward = self.conversions.get(to_unit, {}).get(from_unit)
        if forward:
            factor = 1 / forward
            return _Resolution(
                factor=factor,
                method=METHOD_STANDARD,
                formula=f"{_num(value)} {from_unit} ÷ {_num(forward)} = {value * factor:.4f} {to_unit}",
                accuracy=ACCURACY_HIGH,
            )

        resolution = self._resolve_density(
            value,
            from_unit,
            to_unit,
            material=material,
            custom_density=custom_density,
            current_temp=current_temp,
            use_temperature_adjustment=use_temperature_adjustment,
        )
        if resolution is not None:
            return resolution

        # Global rules only fill gaps the table and density cannot cover
        rule = self.custom_rules.get((None, from_unit, to_unit))
        if rule is not None:
            return self._rule_resolution(value, rule, METHOD_CUSTOM)

        resolution = self._resolve_compound(value, from_unit, to_unit)
        if resolution is not None:
            return resolution

        raise NoConversionPathError(from_unit, to_unit)

    def _material_rule(self, material: MaterialProfile | None, from_unit: str, to_unit: str) -> CustomConversionRule | None:
        if material is None:
            return None
        return self.custom_rules.get((material.id, from_unit, to_unit))

    @staticmethod
    def _rule_resolution(value: float, rule: CustomConversionRule, method: str) -> _Resolution:
        return _Resolution(
            factor=rule.factor,
            method=method,
            formula=f"{_num(value)} {rule.from_unit} × {_num(rule.factor)} = {value * rule.factor:.4f} {rule.to_unit}",
            accuracy=ACCURACY_HIGH,
            notes=[rule.notes] if rule.notes else [],
        )

    def _resolve_density(
        self,
        value: float,
        from_unit: str,
        to_unit: str,
        *,
        material: MaterialProfile | None,
        custom_density: float | None,
        current_temp: float,
        use_temperature_adjustment: bool,
    ) -> _Resolution | None:
        families = (unit_family(from_unit), unit_family(to_unit))
        if families == (UnitFamily.VOLUME, UnitFamily.WEIGHT):
            volume_to_weight = True
            source_pivot, target_pivot = "ml", "gram"
        elif families == (UnitFamily.WEIGHT, UnitFamily.VOLUME):
            volume_to_weight = False
            source_pivot, target_pivot = "gram", "ml"
        else:
            return None

        to_pivot = self._pivot_factor(from_unit, source_pivot)
        from_pivot = self._pivot_factor(target_pivot, to_unit)
        if to_pivot is None or from_pivot is None:
            return None

        notes: list[str] = []
        warnings: list[str] = []

        # Density source priority: material -> custom -> default
        if material is not None:
            density = material.density
            accuracy = ACCURACY_HIGH
        elif custom_density is not None:
            density = float(custom_density)
            accuracy = ACCURACY_MEDIUM
        else:
            density = self.default_density
            accuracy = ACCURACY_ESTIMATED
            warnings.append(DEFAULT_DENSITY_WARNING)

        method = METHOD_DENSITY
        if use_temperature_adjustment and material is not None and material.temperature_coefficient:
            density = adjust_density_for_temperature(density, material.temperature_coefficient, current_temp)
            method = METHOD_TEMPERATURE_ADJUSTED
            notes.append(f"Temperature adjusted density: {density:.4f} g/ml at {_num(current_temp)}°C.")

        if volume_to_weight:
            factor = to_pivot * density * from_pivot
            formula = f"{_num(value)} {from_unit}"
            if from_unit != "ml":
                formula += f" × {_num(to_pivot)} (to ml)"
            formula += f" × {density:.4f} g/ml"
            if to_unit != "gram":
                formula += f" × {_num(from_pivot)} (to {to_unit})"
        else:
            factor = to_pivot / density * from_pivot
            formula = f"{_num(value)} {from_unit}"
            if from_unit != "gram":
                formula += f" × {_num(to_pivot)} (to g)"
            formula += f" ÷ {density:.4f} g/ml"
            if to_unit != "ml":
                formula += f" × {_num(from_pivot)} (to {to_unit})"
        formula += f" = {value * factor:.4f} {to_unit}"

        notes.append(f"Using density: {density:.4f} g/ml.")
        return _Resolution(
            factor=factor,
            method=method,
            formula=formula,
            accuracy=accuracy,
            notes=notes,
            warnings=warnings,
            density=density,
        )

    def _resolve_compound(self, value: float, from_unit: str, to_unit: str) -> _Resolution | None:
        for pivot in COMPOUND_PIVOTS:
            if pivot in (from_unit, to_unit):
                continue
            first = self.table_factor(from_unit, pivot)
            second = self.table_factor(pivot, to_unit)
            if first and second:
                factor = first * second
                return _Resolution(
                    factor=factor,
                    method=METHOD_COMPOUND,
                    formula=f"{_num(value)} {from_unit} → {pivot} → {to_unit} = {value * factor:.4f} {to_unit}",
                    accuracy=ACCURACY_MEDIUM,
                    notes=[f"Conversion through {pivot}."],
                )
        return None


# =============================================================================
# EXPORT
# =============================================================================

CSV_HEADER = ["Original Value", "From Unit", "Converted Value", "To Unit", "Method", "Accuracy", "Formula", "Notes"]


def export_results_csv(results: Iterable[ConversionResult]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in results:
        writer.writerow([
            r.original_value,
            r.from_unit,
            r.converted_value,
            r.to_unit,
            r.method,
            r.accuracy,
            r.formula,
            r.notes,
        ])
    return buffer.getvalue()
