from __future__ import annotations

import io
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from voc_tracker.engine.models import Product, UsageEvent
from voc_tracker.errors import ValidationError
from voc_tracker.services.catalog import ProductCatalog
from voc_tracker.services.usage_log import UsageLog

# normalized header -> canonical column
_ALIASES: Dict[str, str] = {
    "product_id": "id",
    "title": "id",
    "product_name": "name",
    "product_number": "number",
    "product_type": "category",
    "type": "category",
    "sg": "specific_gravity",
    "voc_lbs_gal": "voc_content",
    "voc_lbsgal": "voc_content",
    "hapv": "hap_fraction_by_volume",
    "hap_v": "hap_fraction_by_volume",
    "part_type": "usage_class",
    "emission_unit": "emission_unit_id",
    "eu": "emission_unit_id",
    "usage_date": "date",
}

_PERCENT_COLUMNS: Dict[str, str] = {
    "hap_percent": "hap_fraction_by_volume",
    "dibasic_ester_percent": "dibasic_ester_fraction_by_volume",
    "dibasicester_percent": "dibasic_ester_fraction_by_volume",
    "ethylbenzene_percent": "ethylbenzene_fraction_by_volume",
    "cumene_percent": "cumene_fraction_by_volume",
}

_FRACTION_COLUMNS: Dict[str, str] = {
    "hap_fraction_by_volume": "hap_fraction_by_volume",
    "dibasic_ester": "dibasic_ester_fraction_by_volume",
    "dibasic_ester_fraction_by_volume": "dibasic_ester_fraction_by_volume",
    "ethylbenzene": "ethylbenzene_fraction_by_volume",
    "ethylbenzene_fraction_by_volume": "ethylbenzene_fraction_by_volume",
    "cumene": "cumene_fraction_by_volume",
    "cumene_fraction_by_volume": "cumene_fraction_by_volume",
}

PRODUCT_REQUIRED = {"id", "category", "specific_gravity", "voc_content"}
USAGE_REQUIRED = {"date", "emission_unit_id", "gallons"}


def _norm(s: Any) -> str:
    return str(s or "").strip().lower().replace(" ", "_").replace("-", "_")


def _blank(x: Any) -> bool:
    try:
        return x is None or bool(pd.isna(x)) or str(x).strip() == ""
    except (TypeError, ValueError):
        return False


def _percent(col: str, value: Any) -> float:
    try:
        return float(value) / 100.0
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{col} must be a number, got {value!r}", {col: value}) from e


def normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    df2 = df.copy()
    df2.columns = [_ALIASES.get(_norm(c), _norm(c)) for c in df2.columns]
    return df2


def read_csv_bytes(data: bytes) -> pd.DataFrame:
    if not data:
        raise ValidationError("CSV file is empty.")
    try:
        return pd.read_csv(io.BytesIO(data), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ValidationError(f"CSV could not be read: {e}") from e


def validate_frame(dataset_type: str, df: Optional[pd.DataFrame]) -> List[str]:
    if df is None or len(df) == 0:
        return ["File has no rows."]
    cols = set(normalize_headers(df).columns)
    dtype = _norm(dataset_type)
    if dtype == "products":
        missing = PRODUCT_REQUIRED - cols
        if missing:
            return [f"Products schema expects: {', '.join(sorted(PRODUCT_REQUIRED))}; missing {', '.join(sorted(missing))}."]
    elif dtype == "usage":
        missing = USAGE_REQUIRED - cols
        if missing or not ({"product_id", "product_number"} & set(_norm(c) for c in df.columns)):
            return [
                "Usage schema expects: date, product_id, emission_unit, gallons"
                + (f"; missing {', '.join(sorted(missing))}." if missing else "; missing product_id.")
            ]
    else:
        return [f"Unknown dataset type: {dataset_type}"]
    return []


def products_from_frame(df: pd.DataFrame) -> List[Product]:
    errs = validate_frame("products", df)
    if errs:
        raise ValidationError(errs[0])
    df2 = normalize_headers(df)
    products: List[Product] = []
    for i, row in enumerate(df2.to_dict(orient="records"), start=1):
        kwargs: Dict[str, Any] = {
            "id": row.get("id"),
            "name": str(row.get("name") or ""),
            "number": str(row.get("number") or row.get("id") or ""),
            "supplier": str(row.get("supplier") or ""),
            "category": row.get("category"),
            "specific_gravity": row.get("specific_gravity"),
            "voc_content": row.get("voc_content"),
        }
        if not _blank(row.get("usage_class")):
            kwargs["usage_class"] = row.get("usage_class")
        for col, field in _PERCENT_COLUMNS.items():
            if not _blank(row.get(col)):
                kwargs[field] = _percent(col, row[col])
        for col, field in _FRACTION_COLUMNS.items():
            if not _blank(row.get(col)):
                kwargs[field] = row[col]
        try:
            products.append(Product(**kwargs))
        except ValidationError as e:
            raise ValidationError(f"Products row {i}: {e.message}", {"row": i, **e.details}) from e
    return products


def usage_from_frame(
    df: pd.DataFrame,
    catalog: ProductCatalog,
    unit_ids: Optional[Sequence[str]] = None,
) -> List[UsageEvent]:
    """Usage rows -> events; masses are computed from the catalog at import time."""
    errs = validate_frame("usage", df)
    if errs:
        raise ValidationError(errs[0])
    raw = df.copy()
    raw.columns = [_norm(c) for c in raw.columns]
    scratch = UsageLog(catalog, emission_unit_ids=unit_ids)
    by_number = {p.number: p.id for p in catalog.list() if p.number}
    events: List[UsageEvent] = []
    for i, row in enumerate(raw.to_dict(orient="records"), start=1):
        pid = row.get("product_id")
        if _blank(pid) and not _blank(row.get("product_number")):
            pid = by_number.get(str(row["product_number"]).strip(), row["product_number"])
        event_id = row.get("event_id") if not _blank(row.get("event_id")) else row.get("id")
        usage_class = row.get("usage_class") if not _blank(row.get("usage_class")) else row.get("part_type")
        try:
            events.append(
                scratch.prepare(
                    date=row.get("date") or row.get("usage_date"),
                    product_id=str(pid or "").strip(),
                    emission_unit_id=str(row.get("emission_unit_id") or row.get("emission_unit") or row.get("eu") or ""),
                    gallons=row.get("gallons"),
                    usage_class=None if _blank(usage_class) else usage_class,
                    event_id=None if _blank(event_id) else str(event_id),
                )
            )
        except ValidationError as e:
            raise ValidationError(f"Usage row {i}: {e.message}", {"row": i, **e.details}) from e
    return events
