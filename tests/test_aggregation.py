from datetime import date

import pytest

from voc_tracker.engine.aggregation import aggregate, daily_use, material_use, trend_series
from voc_tracker.engine.models import FACILITY_UNIT_ID
from voc_tracker.errors import ValidationError

UNITS = ("A", "B")


def test_empty_log_gives_full_horizon_of_zeros():
    periods = aggregate([], date(2024, 1, 31), 60, UNITS)
    assert len(periods) == 60
    assert (periods[0].year, periods[0].month) == (2024, 1)
    assert (periods[-1].year, periods[-1].month) == (2019, 2)
    for p in periods:
        for u in UNITS + (FACILITY_UNIT_ID,):
            assert p.monthly_for(u).masses.voc == 0.0
            assert p.rolling_for(u).gallons == 0.0


def test_zero_horizon_is_empty_and_negative_rejected():
    assert aggregate([], date(2024, 1, 31), 0, UNITS) == []
    with pytest.raises(ValidationError):
        aggregate([], date(2024, 1, 31), -1, UNITS)


def test_example_scenario(log, jan_event):
    [p] = aggregate(log.snapshot(), date(2024, 1, 31), 1, UNITS)
    assert p.monthly_for("A").lbs("voc") == pytest.approx(40.0)
    assert p.monthly_for("A").tons("voc") == pytest.approx(0.02)
    assert p.rolling_for("A").lbs("voc") == pytest.approx(40.0)
    assert p.rolling_start == date(2023, 2, 1)
    assert p.facility_monthly.lbs("hap") == pytest.approx(8.34)
    assert p.monthly_for("B").gallons == 0.0


def test_rolling_window_edges_and_leap_day(log):
    # inside Mar 2023 - Feb 2024
    log.record(date="2023-03-01", product_id="P-100", emission_unit_id="A", gallons=1)
    log.record(date="2024-02-29", product_id="P-100", emission_unit_id="A", gallons=2)
    # outside
    log.record(date="2023-02-28", product_id="P-100", emission_unit_id="A", gallons=100)
    log.record(date="2024-03-01", product_id="P-100", emission_unit_id="A", gallons=100)

    p = aggregate(log.snapshot(), date(2024, 2, 10), 1, UNITS)[0]
    assert p.rolling_for("A").gallons == pytest.approx(3.0)
    assert p.rolling_for("A").lbs("voc") == pytest.approx(12.0)
    assert p.monthly_for("A").gallons == pytest.approx(2.0)


def test_rolling_equals_sum_of_trailing_monthly(log):
    for m in range(1, 13):
        log.record(date=date(2023, m, 10), product_id="P-200", emission_unit_id="B", gallons=m)
    periods = aggregate(log.snapshot(), date(2023, 12, 31), 24, UNITS)
    dec = periods[0]
    assert dec.rolling_for("B").lbs("voc") == pytest.approx(sum(p.monthly_for("B").lbs("voc") for p in periods[:12]))
    # Nov 2022 window holds nothing
    assert periods[13].rolling_for("B").gallons == 0.0


def test_aggregation_is_idempotent(log, jan_event):
    log.record(date="2023-11-02", product_id="P-200", emission_unit_id="B", gallons=7.5)
    a = aggregate(log.snapshot(), "2024-01-31", 12, UNITS)
    b = aggregate(log.snapshot(), "2024-01-31", 12, UNITS)
    assert a == b


def test_facility_total_is_sum_over_units_including_untracked(log):
    log.record(date="2024-01-03", product_id="P-100", emission_unit_id="A", gallons=3)
    log.record(date="2024-01-04", product_id="P-200", emission_unit_id="B", gallons=4)
    log.record(date="2024-01-05", product_id="P-100", emission_unit_id="EU-Retired", gallons=5)
    p = aggregate(log.snapshot(), date(2024, 1, 31), 1, UNITS)[0]

    per_unit = sum(p.monthly_for(u).lbs("voc") for u in UNITS)
    untracked = 5 * 4.0
    assert p.facility_monthly.lbs("voc") == pytest.approx(per_unit + untracked)
    assert p.monthly_for("EU-Retired").gallons == 0.0
    assert p.facility_monthly.gallons == pytest.approx(12.0)


def test_trend_series_oldest_first(log, jan_event):
    periods = aggregate(log.snapshot(), date(2024, 3, 31), 12, UNITS)
    series = trend_series(periods, 3)
    assert [r["month"] for r in series] == ["Jan 2024", "Feb 2024", "Mar 2024"]
    assert series[0]["voc_monthly"] == pytest.approx(0.02)
    assert series[2]["voc_monthly"] == 0.0
    assert series[2]["voc_rolling"] == pytest.approx(0.02)


def test_material_use_and_daily_use(log, jan_event):
    log.record(date="2024-01-02", product_id="P-200", emission_unit_id="A", gallons=1.5)
    periods = aggregate(log.snapshot(), date(2024, 1, 31), 2, UNITS)
    rows = material_use(periods, UNITS)
    assert rows[0]["by_unit"] == {"A": pytest.approx(11.5), "B": 0.0}
    assert rows[0]["total"] == pytest.approx(11.5)
    assert rows[1]["total"] == 0.0

    daily = daily_use(log.snapshot(), 2024, 1, UNITS)
    assert [r["date"] for r in daily["A"]] == ["2024-01-02", "2024-01-15"]
    assert daily["A"][0]["coating_type"] == "Clearcoat"
    assert daily["B"] == []
