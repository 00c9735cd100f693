"""Monthly and rolling 12-month emission totals.

Every event is bucketed once by calendar month; the rolling figure of a
target month is the sum of the twelve month buckets ending at it, which is
exactly the set of events dated from the first day of (target - 11 months)
through the last day of the target month.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from voc_tracker.engine.calculator import lbs_to_tons
from voc_tracker.engine.models import EMISSION_UNIT_IDS, FACILITY_UNIT_ID, MassSet, UsageEvent
from voc_tracker.engine.periods import (
    month_bounds,
    month_name,
    rolling_bounds,
    shift_month,
    to_date,
    trailing_months,
)
from voc_tracker.errors import ValidationError

DEFAULT_HORIZON_MONTHS = 60
TREND_MONTHS = 12


@dataclass(frozen=True)
class UnitTotals:
    gallons: float = 0.0
    masses: MassSet = field(default_factory=MassSet)

    def __add__(self, other: "UnitTotals") -> "UnitTotals":
        if not isinstance(other, UnitTotals):
            return NotImplemented
        return UnitTotals(gallons=self.gallons + other.gallons, masses=self.masses + other.masses)

    def lbs(self, substance: str) -> float:
        return self.masses.get(substance)

    def tons(self, substance: str) -> float:
        return lbs_to_tons(self.masses.get(substance))


ZERO = UnitTotals()


@dataclass(frozen=True)
class AggregatePeriodResult:
    year: int
    month: int
    monthly: Mapping[str, UnitTotals]
    rolling: Mapping[str, UnitTotals]

    @property
    def month_name(self) -> str:
        return month_name(self.month)

    @property
    def month_start(self) -> date:
        return month_bounds(self.year, self.month)[0]

    @property
    def month_end(self) -> date:
        return month_bounds(self.year, self.month)[1]

    @property
    def rolling_start(self) -> date:
        return rolling_bounds(self.year, self.month)[0]

    def monthly_for(self, unit_id: str) -> UnitTotals:
        return self.monthly.get(unit_id, ZERO)

    def rolling_for(self, unit_id: str) -> UnitTotals:
        return self.rolling.get(unit_id, ZERO)

    @property
    def facility_monthly(self) -> UnitTotals:
        return self.monthly_for(FACILITY_UNIT_ID)

    @property
    def facility_rolling(self) -> UnitTotals:
        return self.rolling_for(FACILITY_UNIT_ID)


def _event_date(ev: UsageEvent) -> date:
    d = getattr(ev, "date", None)
    if not isinstance(d, date):
        raise ValidationError(f"Usage event {getattr(ev, 'id', '?')} has no valid date.", {"date": str(d)})
    return d


def monthly_buckets(
    events: Iterable[UsageEvent],
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
) -> Dict[Tuple[int, int], Dict[str, UnitTotals]]:
    """(year, month) -> unit id -> totals. The facility key receives every event."""
    tracked = set(unit_ids)
    buckets: Dict[Tuple[int, int], Dict[str, UnitTotals]] = {}
    for ev in events:
        d = _event_date(ev)
        row = buckets.setdefault((d.year, d.month), {})
        contribution = UnitTotals(gallons=float(ev.gallons), masses=ev.masses)
        row[FACILITY_UNIT_ID] = row.get(FACILITY_UNIT_ID, ZERO) + contribution
        if ev.emission_unit_id in tracked:
            row[ev.emission_unit_id] = row.get(ev.emission_unit_id, ZERO) + contribution
    return buckets


def _sum_months(
    buckets: Mapping[Tuple[int, int], Mapping[str, UnitTotals]],
    months: Iterable[Tuple[int, int]],
    keys: Sequence[str],
) -> Dict[str, UnitTotals]:
    out = {k: ZERO for k in keys}
    for ym in months:
        row = buckets.get(ym)
        if not row:
            continue
        for k in keys:
            out[k] = out[k] + row.get(k, ZERO)
    return out


def aggregate(
    events: Iterable[UsageEvent],
    as_of: Any,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
) -> List[AggregatePeriodResult]:
    """One result per calendar month, most recent first, `horizon_months` long.

    Months without usage are present with zero totals.
    """
    if int(horizon_months) < 0:
        raise ValidationError(f"horizon_months must not be negative, got {horizon_months}")
    anchor = to_date(as_of)
    keys = list(unit_ids) + [FACILITY_UNIT_ID]
    buckets = monthly_buckets(events, unit_ids)

    results: List[AggregatePeriodResult] = []
    for k in range(int(horizon_months)):
        y, m = shift_month(anchor.year, anchor.month, -k)
        results.append(
            AggregatePeriodResult(
                year=y,
                month=m,
                monthly=_sum_months(buckets, [(y, m)], keys),
                rolling=_sum_months(buckets, trailing_months(y, m), keys),
            )
        )
    return results


def trend_series(periods: Sequence[AggregatePeriodResult], months: int = TREND_MONTHS) -> List[Dict[str, Any]]:
    """Oldest-first VOC/HAP tons for the most recent `months` periods."""
    out = []
    for p in reversed(list(periods[:months])):
        out.append(
            {
                "month": f"{p.month_name} {p.year}",
                "year": p.year,
                "month_number": p.month,
                "voc_monthly": p.facility_monthly.tons("voc"),
                "voc_rolling": p.facility_rolling.tons("voc"),
                "hap_monthly": p.facility_monthly.tons("hap"),
                "hap_rolling": p.facility_rolling.tons("hap"),
            }
        )
    return out


def material_use(
    periods: Sequence[AggregatePeriodResult],
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
) -> List[Dict[str, Any]]:
    """Monthly gallons per emission unit plus the facility total."""
    return [
        {
            "year": p.year,
            "month": p.month,
            "month_name": p.month_name,
            "by_unit": {u: p.monthly_for(u).gallons for u in unit_ids},
            "total": p.facility_monthly.gallons,
        }
        for p in periods
    ]


def daily_use(
    events: Iterable[UsageEvent],
    year: int,
    month: int,
    unit_ids: Sequence[str] = EMISSION_UNIT_IDS,
) -> Dict[str, List[Dict[str, Any]]]:
    """Daily material use rows of one month, grouped by emission unit and sorted by date."""
    start, end = month_bounds(int(year), int(month))
    out: Dict[str, List[Dict[str, Any]]] = {u: [] for u in unit_ids}
    for ev in events:
        d = _event_date(ev)
        if not (start <= d <= end) or ev.emission_unit_id not in out:
            continue
        out[ev.emission_unit_id].append(
            {
                "date": d.isoformat(),
                "coating_type": ev.category.value if ev.category else "Unknown",
                "product_number": ev.product_number,
                "part_type": ev.usage_class.value,
                "material_use": float(ev.gallons),
            }
        )
    for rows in out.values():
        rows.sort(key=lambda r: r["date"])
    return out
