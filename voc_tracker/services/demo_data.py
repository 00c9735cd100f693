from __future__ import annotations

from datetime import date, timedelta
from typing import List, Sequence

import numpy as np

from voc_tracker.engine.calculator import compute_masses
from voc_tracker.engine.models import (
    EMISSION_UNIT_IDS,
    Product,
    UsageClass,
    UsageEvent,
)


def _product(pid, name, supplier, ptype, sg, voc, hap_v, dbe=0.0, eb=0.0, cumene=0.0) -> Product:
    return Product(
        id=pid,
        name=name,
        number=pid,
        supplier=supplier,
        category=ptype,
        specific_gravity=sg,
        voc_content=voc,
        hap_fraction_by_volume=hap_v,
        dibasic_ester_fraction_by_volume=dbe,
        ethylbenzene_fraction_by_volume=eb,
        cumene_fraction_by_volume=cumene,
    )


# Sample products from the PDS system (category as PDS type code)
SAMPLE_PRODUCTS: List[Product] = [
    _product("G56B1105", "Rivian Black Mountain", "Sherwin Williams", 1, 1.05, 3.55, 0.09),
    _product("585W14J", "Jet Black 600R", "Redspot", 1, 1.055, 0.085, 0.0),
    _product("4800LE7", "Jet Black 600R", "Redspot", 1, 1.065, 4.56, 0.0),
    _product("SPU78534VA", "Econet Z Clear G50S", "PPG", 5, 0.982, 4.95, 0.24, 0.001, 0.0005, 0.0002),
    _product("V66VM156", "G56 Hardener", "Sherwin Williams", 2, 0.97, 3.8, 0.107),
    _product("85456", "Acetone", "Nexeo", 3, 0.791, 0.0, 0.0),
    _product("P1C21A", "Low VOC Adhesion Promoter", "Sherwin Williams", 1, 0.96, 4.59, 0.133),
    _product("SL10", "Waterborne Urethane Hardener", "Redspot", 2, 1.016, 0.536, 0.019),
]


def generate_sample_usage(
    products: Sequence[Product] = SAMPLE_PRODUCTS,
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
    end: date | None = None,
    days: int = 365,
    seed: int = 183,
) -> List[UsageEvent]:
    """Weekday usage for the `days` before `end` (inclusive), 2-7 entries a day.

    Seeded so the same arguments always produce the same log.
    """
    if not products or not unit_ids:
        return []
    rng = np.random.default_rng(seed)
    end = end or date.today()
    events: List[UsageEvent] = []
    for i in range(days, -1, -1):
        d = end - timedelta(days=i)
        if d.weekday() >= 5:
            continue
        for j in range(int(rng.integers(2, 8))):
            product = products[int(rng.integers(0, len(products)))]
            unit = unit_ids[int(rng.integers(0, len(unit_ids)))]
            gallons = round(float(rng.uniform(5.0, 55.0)), 2)
            usage_class = UsageClass.AUTOMOTIVE if rng.random() > 0.3 else UsageClass.NON_AUTOMOTIVE_SPECIALTY
            events.append(
                UsageEvent(
                    id=f"{d.isoformat()}-{j}",
                    date=d,
                    product_id=product.id,
                    emission_unit_id=unit,
                    usage_class=usage_class,
                    gallons=gallons,
                    masses=compute_masses(gallons, product),
                    product_number=product.number,
                    product_name=product.name,
                    category=product.category,
                )
            )
    return events
