"""Serialized aggregate emissions report.

The dict layout below is the handoff contract to report, export and chart
consumers. Units follow the regulatory filing format:

- VOC per emission unit and FG-Coating totals: tons
- HAP (FG-Facility) and cumene: tons
- dibasic ester and ethylbenzene: pounds, with the rolling total also in tons
- gallons: gallons
"""
from __future__ import annotations

import hashlib
import io
import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from voc_tracker.engine.aggregation import AggregatePeriodResult, material_use
from voc_tracker.engine.limits import PERMIT_LIMITS, RegulatoryLimit, evaluate_period
from voc_tracker.engine.models import EMISSION_UNIT_IDS

SCHEMA = "voc_aggregate_emissions.v1"

FIELD_UNITS: Dict[str, str] = {
    "by_unit.*.voc_monthly": "tons",
    "by_unit.*.voc_rolling": "tons",
    "by_unit.*.gallons_monthly": "gal",
    "by_unit.*.gallons_rolling": "gal",
    "voc_monthly_total": "tons",
    "voc_rolling_total": "tons",
    "gallons_monthly_total": "gal",
    "gallons_rolling_total": "gal",
    "dibasic_ester_monthly": "lbs",
    "dibasic_ester_rolling": "lbs",
    "dibasic_ester_rolling_tons": "tons",
    "ethylbenzene_monthly": "lbs",
    "ethylbenzene_rolling": "lbs",
    "ethylbenzene_rolling_tons": "tons",
    "cumene_monthly": "tons",
    "cumene_rolling": "tons",
    "hap_monthly": "tons",
    "hap_rolling": "tons",
}


def period_to_dict(period: AggregatePeriodResult, unit_ids: Sequence[str] = EMISSION_UNIT_IDS) -> Dict[str, Any]:
    fm = period.facility_monthly
    fr = period.facility_rolling
    return {
        "year": period.year,
        "month": period.month,
        "month_name": period.month_name,
        "month_start": period.month_start.isoformat(),
        "month_end": period.month_end.isoformat(),
        "rolling_start": period.rolling_start.isoformat(),
        "by_unit": {
            u: {
                "voc_monthly": period.monthly_for(u).tons("voc"),
                "voc_rolling": period.rolling_for(u).tons("voc"),
                "gallons_monthly": period.monthly_for(u).gallons,
                "gallons_rolling": period.rolling_for(u).gallons,
            }
            for u in unit_ids
        },
        "voc_monthly_total": fm.tons("voc"),
        "voc_rolling_total": fr.tons("voc"),
        "gallons_monthly_total": fm.gallons,
        "gallons_rolling_total": fr.gallons,
        "dibasic_ester_monthly": fm.lbs("dibasic_ester"),
        "dibasic_ester_rolling": fr.lbs("dibasic_ester"),
        "dibasic_ester_rolling_tons": fr.tons("dibasic_ester"),
        "ethylbenzene_monthly": fm.lbs("ethylbenzene"),
        "ethylbenzene_rolling": fr.lbs("ethylbenzene"),
        "ethylbenzene_rolling_tons": fr.tons("ethylbenzene"),
        "cumene_monthly": fm.tons("cumene"),
        "cumene_rolling": fr.tons("cumene"),
        "hap_monthly": fm.tons("hap"),
        "hap_rolling": fr.tons("hap"),
    }


def _normalize(obj: Any) -> Any:
    # floats quantized so the hash does not drift on the last bits
    if isinstance(obj, float):
        return format(Decimal(repr(obj)).quantize(Decimal("1e-12"), rounding=ROUND_HALF_UP), "f")
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(x) for x in obj]
    return obj


def canonical_json(obj: Any) -> str:
    return json.dumps(_normalize(obj), ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def sha256_json(obj: Any) -> str:
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def build_report(
    periods: Sequence[AggregatePeriodResult],
    *,
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
    limits: Iterable[RegulatoryLimit] = PERMIT_LIMITS,
    advisories: Optional[List[Dict[str, Any]]] = None,
    source: str = "",
) -> Dict[str, Any]:
    rows = [period_to_dict(p, unit_ids) for p in periods]
    limit_rows = evaluate_period(periods[0], limits) if periods else []
    out = {
        "schema": SCHEMA,
        "as_of": {"year": periods[0].year, "month": periods[0].month} if periods else None,
        "horizon_months": len(rows),
        "emission_units": list(unit_ids),
        "units": dict(FIELD_UNITS),
        "periods": rows,
        "limits": limit_rows,
        "source": source,
        "advisories": list(advisories or []),
    }
    # advisories carry timestamps; keep them out of the result hash
    out["result_hash"] = sha256_json({k: v for k, v in out.items() if k not in ("advisories", "source")})
    return out


def periods_frame(periods: Sequence[AggregatePeriodResult], unit_ids: Sequence[str] = EMISSION_UNIT_IDS) -> pd.DataFrame:
    """Flat table, one row per month, `by_unit` columns as `<unit> <field>`."""
    rows = []
    for p in periods:
        d = period_to_dict(p, unit_ids)
        flat = {k: v for k, v in d.items() if k != "by_unit"}
        for u, vals in d["by_unit"].items():
            for k, v in vals.items():
                flat[f"{u} {k}"] = v
        rows.append(flat)
    return pd.DataFrame(rows)


def material_use_frame(periods: Sequence[AggregatePeriodResult], unit_ids: Sequence[str] = EMISSION_UNIT_IDS) -> pd.DataFrame:
    rows = []
    for r in material_use(periods, unit_ids):
        row = {"year": r["year"], "month": r["month_name"]}
        row.update(r["by_unit"])
        row["FG-Facility Total"] = r["total"]
        rows.append(row)
    return pd.DataFrame(rows)


def build_xlsx(
    periods: Sequence[AggregatePeriodResult],
    *,
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
    limits: Iterable[RegulatoryLimit] = PERMIT_LIMITS,
    material_content: Optional[List[Dict[str, Any]]] = None,
) -> bytes:
    """Aggregate emissions workbook: emissions, material use, limits, material content."""
    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        periods_frame(periods, unit_ids).to_excel(writer, sheet_name="Aggregate_Emissions", index=False)
        material_use_frame(periods, unit_ids).to_excel(writer, sheet_name="Material_Use", index=False)
        if periods:
            pd.DataFrame(evaluate_period(periods[0], limits)).to_excel(writer, sheet_name="Limits", index=False)
        if material_content:
            pd.DataFrame(material_content).to_excel(writer, sheet_name="Material_Content", index=False)
    return out.getvalue()
