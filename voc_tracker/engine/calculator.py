from __future__ import annotations

from typing import Any, Dict, List

from voc_tracker.engine.models import MassSet, Product
from voc_tracker.errors import ValidationError

# Mass of one gallon of water; volume fraction x sg x 8.34 = lb per gallon
LBS_PER_GALLON_WATER = 8.34
LBS_PER_TON = 2000.0

# Proportional split of total dibasic ester content into its three esters.
# Asserted by the coating suppliers, not derived from product data.
DIBASIC_ESTER_SPLIT: Dict[str, Dict[str, Any]] = {
    "dimethyl_adipate": {"cas_number": "627-93-0", "fraction": 0.4},
    "dimethyl_glutarate": {"cas_number": "1119-40-0", "fraction": 0.4},
    "dimethyl_succinate": {"cas_number": "106-65-0", "fraction": 0.2},
}

ETHYLBENZENE_CAS = "100-41-4"
CUMENE_CAS = "98-82-8"


def lbs_to_tons(lbs: float) -> float:
    return float(lbs) / LBS_PER_TON


def _lbs_per_gallon(fraction_by_volume: float, specific_gravity: float) -> float:
    return fraction_by_volume * specific_gravity * LBS_PER_GALLON_WATER


def compute_masses(gallons: float, product: Product) -> MassSet:
    """Pounds of each substance emitted by `gallons` of `product`.

    No rounding; conversion to tons happens at reporting time.
    """
    g = float(gallons)
    if g < 0:
        raise ValidationError(f"gallons must not be negative, got {g}", {"product_id": product.id})
    sg = product.specific_gravity
    return MassSet(
        voc=g * product.voc_content,
        hap=g * _lbs_per_gallon(product.hap_fraction_by_volume, sg),
        dibasic_ester=g * _lbs_per_gallon(product.dibasic_ester_fraction_by_volume, sg),
        ethylbenzene=g * _lbs_per_gallon(product.ethylbenzene_fraction_by_volume, sg),
        cumene=g * _lbs_per_gallon(product.cumene_fraction_by_volume, sg),
    )


def material_content(product: Product) -> Dict[str, Any]:
    """Per-gallon content line of the material content report (lb/gal)."""
    sg = product.specific_gravity
    dbe = _lbs_per_gallon(product.dibasic_ester_fraction_by_volume, sg)
    row: Dict[str, Any] = {
        "product_id": product.id,
        "product_number": product.number,
        "product_name": product.name,
        "category": product.category.value,
        "hap_content": _lbs_per_gallon(product.hap_fraction_by_volume, sg),
        "voc_content": product.voc_content,
        "cumene_content": _lbs_per_gallon(product.cumene_fraction_by_volume, sg),
        "ethylbenzene_content": _lbs_per_gallon(product.ethylbenzene_fraction_by_volume, sg),
    }
    for ester, split in DIBASIC_ESTER_SPLIT.items():
        row[ester] = dbe * float(split["fraction"])
    return row


def material_content_report(products: List[Product]) -> List[Dict[str, Any]]:
    return [material_content(p) for p in products]
