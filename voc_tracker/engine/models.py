from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from voc_tracker.errors import ValidationError

EMISSION_UNIT_IDS: Tuple[str, ...] = ("EU-CoatingLine-01", "EU-CoatingLine-02", "EU-CoatingLine-03")

# Virtual unit: sum over every usage event, whatever unit it was logged against.
FACILITY_UNIT_ID = "FG-Facility"

SUBSTANCES: Tuple[str, ...] = ("voc", "hap", "dibasic_ester", "ethylbenzene", "cumene")


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace("_", "-").replace(" ", "-")


class ProductCategory(str, Enum):
    BASECOAT = "Basecoat"
    HARDENER = "Hardener"
    CLEARCOAT = "Clearcoat"
    SOLVENT = "Solvent"


# Product type codes used by the supplier PDS system
PDS_PRODUCT_TYPES: Dict[int, ProductCategory] = {
    1: ProductCategory.BASECOAT,
    2: ProductCategory.HARDENER,
    3: ProductCategory.SOLVENT,
    5: ProductCategory.CLEARCOAT,
}

PDS_TYPE_CODES: Dict[ProductCategory, int] = {c: code for code, c in PDS_PRODUCT_TYPES.items()}


class UsageClass(str, Enum):
    AUTOMOTIVE = "automotive"
    NON_AUTOMOTIVE_SPECIALTY = "non-automotive-specialty"


def parse_category(value: Any) -> ProductCategory:
    if isinstance(value, ProductCategory):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if int(value) in PDS_PRODUCT_TYPES and int(value) == value:
            return PDS_PRODUCT_TYPES[int(value)]
        raise ValidationError(f"Unknown PDS product type: {value}", {"category": value})
    s = _norm(value)
    if s.isdigit() and int(s) in PDS_PRODUCT_TYPES:
        return PDS_PRODUCT_TYPES[int(s)]
    for c in ProductCategory:
        if c.value.lower() == s:
            return c
    raise ValidationError(f"Unknown product category: {value!r}", {"category": value})


def parse_usage_class(value: Any) -> UsageClass:
    if isinstance(value, UsageClass):
        return value
    s = _norm(value)
    if s in ("automotive", "auto"):
        return UsageClass.AUTOMOTIVE
    if s.startswith("non-automotive"):
        return UsageClass.NON_AUTOMOTIVE_SPECIALTY
    raise ValidationError(f"Unknown usage class: {value!r}", {"usage_class": value})


def _finite(name: str, value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}", {name: value}) from e
    if not math.isfinite(v):
        raise ValidationError(f"{name} must be finite, got {value!r}", {name: value})
    return v


def _fraction(name: str, value: Any) -> float:
    v = _finite(name, value)
    if v < 0.0 or v > 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {v}", {name: v})
    return v


@dataclass(frozen=True)
class MassSet:
    """Pounds of each tracked substance."""

    voc: float = 0.0
    hap: float = 0.0
    dibasic_ester: float = 0.0
    ethylbenzene: float = 0.0
    cumene: float = 0.0

    def __add__(self, other: "MassSet") -> "MassSet":
        if not isinstance(other, MassSet):
            return NotImplemented
        return MassSet(
            voc=self.voc + other.voc,
            hap=self.hap + other.hap,
            dibasic_ester=self.dibasic_ester + other.dibasic_ester,
            ethylbenzene=self.ethylbenzene + other.ethylbenzene,
            cumene=self.cumene + other.cumene,
        )

    def get(self, substance: str) -> float:
        if substance not in SUBSTANCES:
            raise KeyError(substance)
        return float(getattr(self, substance))

    def to_dict(self) -> Dict[str, float]:
        return {s: self.get(s) for s in SUBSTANCES}


@dataclass(frozen=True)
class ChemicalComponent:
    chemical_name: str
    cas_number: str
    weight_fraction: float
    is_hazardous_air_pollutant: bool = False

    def __post_init__(self):
        object.__setattr__(self, "weight_fraction", _fraction("weight_fraction", self.weight_fraction))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chemical_name": self.chemical_name,
            "cas_number": self.cas_number,
            "weight_fraction": self.weight_fraction,
            "is_hazardous_air_pollutant": bool(self.is_hazardous_air_pollutant),
        }


@dataclass(frozen=True)
class Product:
    """Material record of the catalog.

    Fractions are volume based; `voc_content` is pounds of VOC per gallon.
    """

    id: str
    name: str
    number: str
    supplier: str
    category: ProductCategory
    usage_class: UsageClass = UsageClass.AUTOMOTIVE
    specific_gravity: float = 1.0
    voc_content: float = 0.0
    hap_fraction_by_volume: float = 0.0
    dibasic_ester_fraction_by_volume: float = 0.0
    ethylbenzene_fraction_by_volume: float = 0.0
    cumene_fraction_by_volume: float = 0.0
    chemical_composition: Tuple[ChemicalComponent, ...] = field(default_factory=tuple)
    remote_item_id: Optional[str] = None

    def __post_init__(self):
        if not str(self.id or "").strip():
            raise ValidationError("Product id is required.")
        object.__setattr__(self, "id", str(self.id).strip())
        object.__setattr__(self, "category", parse_category(self.category))
        object.__setattr__(self, "usage_class", parse_usage_class(self.usage_class))

        sg = _finite("specific_gravity", self.specific_gravity)
        if sg <= 0:
            raise ValidationError(f"specific_gravity must be positive, got {sg}", {"product_id": self.id})
        object.__setattr__(self, "specific_gravity", sg)

        voc = _finite("voc_content", self.voc_content)
        if voc < 0:
            raise ValidationError(f"voc_content must be non-negative, got {voc}", {"product_id": self.id})
        object.__setattr__(self, "voc_content", voc)

        for name in (
            "hap_fraction_by_volume",
            "dibasic_ester_fraction_by_volume",
            "ethylbenzene_fraction_by_volume",
            "cumene_fraction_by_volume",
        ):
            object.__setattr__(self, name, _fraction(name, getattr(self, name)))

        object.__setattr__(self, "chemical_composition", tuple(self.chemical_composition or ()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "supplier": self.supplier,
            "category": self.category.value,
            "usage_class": self.usage_class.value,
            "specific_gravity": self.specific_gravity,
            "voc_content": self.voc_content,
            "hap_fraction_by_volume": self.hap_fraction_by_volume,
            "dibasic_ester_fraction_by_volume": self.dibasic_ester_fraction_by_volume,
            "ethylbenzene_fraction_by_volume": self.ethylbenzene_fraction_by_volume,
            "cumene_fraction_by_volume": self.cumene_fraction_by_volume,
            "chemical_composition": [c.to_dict() for c in self.chemical_composition],
        }


@dataclass(frozen=True)
class EmissionUnit:
    id: str
    display_name: str = ""
    active: bool = True
    description: str = ""


DEFAULT_EMISSION_UNITS: Tuple[EmissionUnit, ...] = tuple(
    EmissionUnit(id=u, display_name=u.replace("EU-CoatingLine-", "Coating Line ")) for u in EMISSION_UNIT_IDS
)


@dataclass(frozen=True)
class UsageEvent:
    """One logged material use. `masses` are fixed when the event is created."""

    id: str
    date: date
    product_id: str
    emission_unit_id: str
    usage_class: UsageClass
    gallons: float
    masses: MassSet
    product_number: str = ""
    product_name: str = ""
    category: Optional[ProductCategory] = None

    @property
    def voc_mass(self) -> float:
        return self.masses.voc

    @property
    def hap_mass(self) -> float:
        return self.masses.hap

    @property
    def dibasic_ester_mass(self) -> float:
        return self.masses.dibasic_ester

    @property
    def ethylbenzene_mass(self) -> float:
        return self.masses.ethylbenzene

    @property
    def cumene_mass(self) -> float:
        return self.masses.cumene

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "product_id": self.product_id,
            "product_number": self.product_number,
            "product_name": self.product_name,
            "category": self.category.value if self.category else None,
            "emission_unit_id": self.emission_unit_id,
            "usage_class": self.usage_class.value,
            "gallons": self.gallons,
            "voc_lbs": self.masses.voc,
            "hap_lbs": self.masses.hap,
            "dibasic_ester_lbs": self.masses.dibasic_ester,
            "ethylbenzene_lbs": self.masses.ethylbenzene,
            "cumene_lbs": self.masses.cumene,
        }
