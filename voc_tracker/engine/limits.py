from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from voc_tracker.engine.aggregation import AggregatePeriodResult
from voc_tracker.engine.models import FACILITY_UNIT_ID, SUBSTANCES
from voc_tracker.errors import ConfigurationError

logger = logging.getLogger(__name__)

WARNING_RATIO = 0.75
CRITICAL_RATIO = 0.90


class LimitStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class LimitScope(str, Enum):
    EMISSION_UNIT = "emission_unit"
    FACILITY = "facility"


@dataclass(frozen=True)
class LimitEvaluation:
    value: float
    limit: float
    ratio: float
    status: LimitStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "limit": self.limit,
            "ratio": self.ratio,
            "percent": self.ratio * 100.0,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class RegulatoryLimit:
    """Permit limit in tons per year, checked against rolling 12-month tons."""

    key: str
    substance: str
    scope: LimitScope
    limit_tpy: float
    label: str = ""
    unit_id: Optional[str] = None

    def scope_unit(self) -> str:
        return FACILITY_UNIT_ID if self.scope == LimitScope.FACILITY else str(self.unit_id)


# PTI 183-15
PERMIT_LIMITS: Tuple[RegulatoryLimit, ...] = (
    RegulatoryLimit("voc_eu1", "voc", LimitScope.EMISSION_UNIT, 40.0, "EU-CoatingLine-01 VOC", "EU-CoatingLine-01"),
    RegulatoryLimit("voc_eu2", "voc", LimitScope.EMISSION_UNIT, 40.0, "EU-CoatingLine-02 VOC", "EU-CoatingLine-02"),
    RegulatoryLimit("voc_eu3", "voc", LimitScope.EMISSION_UNIT, 10.0, "EU-CoatingLine-03 VOC", "EU-CoatingLine-03"),
    RegulatoryLimit("voc_fg_coating", "voc", LimitScope.FACILITY, 89.9, "FG-Coating Total VOC"),
    RegulatoryLimit("dibasic_ester", "dibasic_ester", LimitScope.FACILITY, 2.9, "Dibasic Ester (FG-Coating)"),
    RegulatoryLimit("ethylbenzene", "ethylbenzene", LimitScope.FACILITY, 2.9, "Ethylbenzene (FG-Coating)"),
    RegulatoryLimit("cumene", "cumene", LimitScope.FACILITY, 1.4, "Cumene (FG-Facility)"),
    RegulatoryLimit("aggregate_haps", "hap", LimitScope.FACILITY, 8.9, "Aggregate HAPs (FG-Facility)"),
)


def classify(ratio: float) -> LimitStatus:
    if ratio <= WARNING_RATIO:
        return LimitStatus.OK
    if ratio <= CRITICAL_RATIO:
        return LimitStatus.WARNING
    return LimitStatus.CRITICAL


def evaluate(rolling_value: float, limit: Optional[float]) -> LimitEvaluation:
    """Utilisation of a permit limit. Boundaries are inclusive (0.90 is a warning)."""
    try:
        lim = float(limit) if limit is not None else float("nan")
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Permit limit is not a number: {limit!r}") from e
    if not math.isfinite(lim) or lim <= 0:
        raise ConfigurationError(f"Permit limit must be a positive number, got {limit!r}", {"limit": limit})
    value = float(rolling_value)
    ratio = value / lim
    return LimitEvaluation(value=value, limit=lim, ratio=ratio, status=classify(ratio))


def _limit_from_dict(d: Dict[str, Any]) -> RegulatoryLimit:
    try:
        substance = str(d["substance"]).strip().lower()
        scope = LimitScope(str(d.get("scope") or "facility").strip().lower())
        key = str(d.get("key") or f"{substance}_{d.get('unit_id') or scope.value}")
        lim = RegulatoryLimit(
            key=key,
            substance=substance,
            scope=scope,
            limit_tpy=float(d["limit_tpy"]),
            label=str(d.get("label") or key),
            unit_id=d.get("unit_id"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid permit limit entry: {d!r}") from e
    if lim.substance not in SUBSTANCES:
        raise ConfigurationError(f"Unknown substance in permit limit: {lim.substance}", {"key": lim.key})
    if lim.scope == LimitScope.EMISSION_UNIT and not lim.unit_id:
        raise ConfigurationError(f"Emission-unit limit {lim.key} has no unit_id.")
    return lim


def load_limits(path: Optional[str | Path] = None) -> Tuple[RegulatoryLimit, ...]:
    """Permit limit table from YAML (`limits:` list); built-in PTI table when no file is given."""
    if not path:
        return PERMIT_LIMITS
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Permit limit file not found: {p}")
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    rows = data.get("limits") if isinstance(data, dict) else None
    if not isinstance(rows, list) or not rows:
        raise ConfigurationError(f"Permit limit file has no limits: {p}")
    limits = tuple(_limit_from_dict(r) for r in rows)
    logger.info("Loaded %d permit limits from %s", len(limits), p)
    return limits


def evaluate_period(
    period: AggregatePeriodResult,
    limits: Iterable[RegulatoryLimit] = PERMIT_LIMITS,
) -> List[Dict[str, Any]]:
    """Rolling 12-month tons of `period` against each permit limit."""
    out = []
    for lim in limits:
        rolling_tons = period.rolling_for(lim.scope_unit()).tons(lim.substance)
        ev = evaluate(rolling_tons, lim.limit_tpy)
        row = {
            "key": lim.key,
            "label": lim.label,
            "substance": lim.substance,
            "scope": lim.scope.value,
            "unit_id": lim.scope_unit(),
            "year": period.year,
            "month": period.month,
        }
        row.update(ev.to_dict())
        out.append(row)
    return out
