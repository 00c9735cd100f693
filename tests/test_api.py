import pytest
from fastapi.testclient import TestClient

from conftest import make_product
from voc_tracker.api.main import create_app
from voc_tracker.errors import UpstreamUnavailable
from voc_tracker.services.sources import InMemoryDataSource
from voc_tracker.services.tracker import EmissionsTracker


class OfflineSource(InMemoryDataSource):
    name = "sharepoint"

    async def list_products(self):
        raise UpstreamUnavailable("site unreachable")

    async def append_usage(self, event):
        raise UpstreamUnavailable("site unreachable")


@pytest.fixture()
def client():
    tracker = EmissionsTracker(InMemoryDataSource(products=[make_product()]))
    with TestClient(create_app(tracker)) as c:
        yield c


def _log(client, **overrides):
    body = {"date": "2024-01-15", "product_id": "P-100", "emission_unit_id": "EU-CoatingLine-01", "gallons": 10}
    body.update(overrides)
    return client.post("/usage", json=body)


def test_health_and_status(client):
    assert client.get("/health").json()["status"] == "ok"
    status = client.get("/status").json()
    assert status["loaded_from"] == "memory"
    assert status["degraded"] is False
    assert status["products"] == 1


def test_log_usage_and_aggregate(client):
    r = _log(client)
    assert r.status_code == 201
    assert r.json()["voc_lbs"] == pytest.approx(40.0)

    report = client.get("/emissions/aggregate", params={"as_of": "2024-01-31", "horizon": 1}).json()
    jan = report["periods"][0]
    assert jan["by_unit"]["EU-CoatingLine-01"]["voc_monthly"] == pytest.approx(0.02)
    assert report["units"]["voc_monthly_total"] == "tons"

    assert len(client.get("/usage", params={"emission_unit_id": "EU-CoatingLine-01"}).json()) == 1


@pytest.mark.parametrize(
    "overrides",
    [{"gallons": 0}, {"product_id": "nope"}, {"emission_unit_id": "EU-CoatingLine-07"}, {"date": "2024-02-30"}],
)
def test_bad_usage_is_422(client, overrides):
    assert _log(client, **overrides).status_code == 422
    assert client.get("/usage").json() == []


def test_limits_trend_and_material_views(client):
    _log(client, gallons=18000)
    limits = client.get("/emissions/limits", params={"as_of": "2024-01-31"}).json()
    by_key = {r["key"]: r for r in limits["limits"]}
    assert by_key["voc_eu1"]["status"] == "warning"
    assert by_key["voc_eu1"]["percent"] == pytest.approx(90.0)

    trend = client.get("/emissions/trend", params={"as_of": "2024-03-31", "months": 3}).json()
    assert [t["month"] for t in trend] == ["Jan 2024", "Feb 2024", "Mar 2024"]

    use = client.get("/emissions/material-use", params={"as_of": "2024-01-31", "horizon": 1}).json()
    assert use[0]["total"] == pytest.approx(18000)

    daily = client.get("/emissions/daily-use", params={"year": 2024, "month": 1}).json()
    assert daily["EU-CoatingLine-01"][0]["material_use"] == pytest.approx(18000)


def test_catalog_endpoints(client):
    body = {
        "id": "SL10",
        "name": "Waterborne Urethane Hardener",
        "category": "Hardener",
        "specific_gravity": 1.016,
        "voc_content": 0.536,
        "hap_fraction_by_volume": 0.019,
        "chemical_composition": [{"chemical_name": "Cumene", "cas_number": "98-82-8", "weight_fraction": 0.01, "is_hazardous_air_pollutant": True}],
    }
    r = client.post("/catalog/products", json=body)
    assert r.status_code == 201
    assert r.json()["chemical_composition"][0]["cas_number"] == "98-82-8"
    assert [p["id"] for p in client.get("/catalog/products").json()] == ["P-100", "SL10"]
    content = client.get("/catalog/material-content").json()
    assert {row["product_id"] for row in content} == {"P-100", "SL10"}

    bad = dict(body, id="BAD", hap_fraction_by_volume=1.5)
    assert client.post("/catalog/products", json=bad).status_code == 422


def test_csv_imports(client):
    products = b"id,category,specific_gravity,voc_content,hap_percent\nX1,Solvent,0.8,6.6,0\n"
    r = client.post("/catalog/products/import", content=products, headers={"Content-Type": "text/csv"})
    assert r.status_code == 201
    assert r.json()["ids"] == ["X1"]

    usage = b"date,product_id,emission_unit,gallons\n2024-01-02,X1,EU-CoatingLine-02,5\n2024-01-03,P-100,EU-CoatingLine-03,1\n"
    r = client.post("/usage/import", content=usage, headers={"Content-Type": "text/csv"})
    assert r.status_code == 201
    assert r.json()["imported"] == 2
    assert len(client.get("/usage").json()) == 2

    bad = b"date,product_id,emission_unit,gallons\n2024-01-02,ZZZ,EU-CoatingLine-02,5\n"
    assert client.post("/usage/import", content=bad).status_code == 422


def test_xlsx_export(client):
    _log(client)
    r = client.get("/emissions/export.xlsx", params={"as_of": "2024-01-31", "horizon": 2})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/vnd.openxmlformats")
    assert "aggregate_emissions_2024-01.xlsx" in r.headers["content-disposition"]
    assert r.content[:2] == b"PK"


def test_offline_store_degrades_and_rejects_writes():
    tracker = EmissionsTracker(OfflineSource(), fallback=InMemoryDataSource(products=[make_product()]))
    with TestClient(create_app(tracker)) as c:
        status = c.get("/status").json()
        assert status["degraded"] is True
        assert status["advisories"]
        report = c.get("/emissions/aggregate", params={"as_of": "2024-01-31", "horizon": 2}).json()
        assert report["advisories"][0]["details"]["error"] == "site unreachable"

        r = _log(c)
        assert r.status_code == 503
        assert r.json()["error"] == "UpstreamUnavailable"
        assert c.get("/usage").json() == []


class ClosingSource(InMemoryDataSource):
    name = "closing"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.closed = False

    async def aclose(self):
        self.closed = True


def test_lifespan_refreshes_on_startup_and_closes_source():
    src = ClosingSource(products=[make_product()])
    tracker = EmissionsTracker(src)
    with TestClient(create_app(tracker)) as c:
        assert c.get("/status").json()["loaded_from"] == "closing"
        assert src.closed is False
    assert src.closed is True
