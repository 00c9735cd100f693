import asyncio
import json
from datetime import date

import httpx
import pytest

from voc_tracker.config import Settings
from voc_tracker.engine.models import EMISSION_UNIT_IDS
from voc_tracker.errors import ConfigurationError, UpstreamUnavailable, ValidationError
from voc_tracker.services.demo_data import SAMPLE_PRODUCTS, generate_sample_usage
from voc_tracker.services.sharepoint import SharePointDataSource, product_to_fields
from voc_tracker.services.sources import InMemoryDataSource, demo_data_source, get_data_source
from voc_tracker.services.sql_store import SqlDataSource
from voc_tracker.services.tracker import EmissionsTracker

SITE = "https://contoso.sharepoint.com/sites/ehs"
GRAPH = "https://graph.microsoft.com/v1.0"
LIST_IDS = {"VOC_Products": "lp", "VOC_UsageLog": "lu", "VOC_EmissionUnits": "le"}

PRODUCT_ITEM = {
    "id": "11",
    "fields": {
        "Title": "P-100",
        "ProductName": "Test Basecoat",
        "ProductNumber": "P-100",
        "Supplier": "Acme Coatings",
        "Category": "Basecoat",
        "ProductType": 1,
        "SpecificGravity": 1.0,
        "VOC_LbsGal": 4.0,
        "HAP_Percent": 10,
        "Cumene_Percent": 0.02,
    },
}

USAGE_PAGE_1 = [
    {
        "id": "501",
        "fields": {
            "UsageDate": "2024-01-15T00:00:00Z",
            "ProductIDLookupId": "11",
            "EmissionUnit": "EU-CoatingLine-01",
            "PartType": "automotive",
            "Gallons": 10,
        },
    }
]
USAGE_PAGE_2 = [
    {
        "id": "502",
        "fields": {
            "UsageDate": "2024-01-10T00:00:00Z",
            "ProductIDLookupId": "11",
            "EmissionUnit": "EU-CoatingLine-02",
            "PartType": "Non-Automotive Specialty",
            "Gallons": 5,
            "VOC_Lbs": 99.0,
            "HAP_Lbs": 1.5,
        },
    },
    {
        "id": "503",
        "fields": {
            "UsageDate": "2024-01-09T00:00:00Z",
            "ProductIDLookupId": "99",
            "EmissionUnit": "EU-CoatingLine-03",
            "Gallons": 2,
            "VOC_Lbs": 7.0,
        },
    },
]


class FakeGraph:
    """Minimal Graph endpoint for the three VOC lists."""

    def __init__(self, fail_with=None, products=None):
        self.fail_with = fail_with
        self.products = [PRODUCT_ITEM] if products is None else products
        self.posted = []
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.fail_with == "connect":
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"message": "throttled"}})

        path = request.url.path.removeprefix("/v1.0")
        if path.startswith("/sites/contoso.sharepoint.com"):
            return httpx.Response(200, json={"id": "site-1"})
        if path == "/sites/site-1/lists":
            name = request.url.params["$filter"].split("'")[1]
            return httpx.Response(200, json={"value": [{"id": LIST_IDS[name]}]})
        if request.method == "POST":
            body = json.loads(request.content)
            self.posted.append((path, body["fields"]))
            return httpx.Response(201, json={"id": "777"})
        if path == "/sites/site-1/lists/lp/items":
            return httpx.Response(200, json={"value": self.products})
        if path == "/sites/site-1/lists/le/items":
            units = [{"id": str(i), "fields": {"Title": u, "UnitName": u, "IsActive": True}} for i, u in enumerate(EMISSION_UNIT_IDS)]
            return httpx.Response(200, json={"value": units})
        if path == "/sites/site-1/lists/lu/items":
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"value": USAGE_PAGE_2})
            return httpx.Response(
                200,
                json={"value": USAGE_PAGE_1, "@odata.nextLink": f"{GRAPH}/sites/site-1/lists/lu/items?page=2"},
            )
        return httpx.Response(404, json={"error": {"message": f"no route {path}"}})


def _sharepoint(graph: FakeGraph) -> SharePointDataSource:
    return SharePointDataSource(SITE, "token-123", transport=httpx.MockTransport(graph))


def test_sharepoint_products_convert_percent():
    async def go():
        src = _sharepoint(FakeGraph())
        try:
            return await src.list_products()
        finally:
            await src.aclose()

    [p] = asyncio.run(go())
    assert p.id == "P-100"
    assert p.hap_fraction_by_volume == pytest.approx(0.10)
    assert p.cumene_fraction_by_volume == pytest.approx(0.0002)
    assert p.remote_item_id == "11"
    assert product_to_fields(p)["HAP_Percent"] == pytest.approx(10.0)


def test_sharepoint_usage_follows_paging_and_resolves_lookup():
    async def go():
        src = _sharepoint(FakeGraph())
        try:
            products = await src.list_products()
            return await src.load_usage(products=products)
        finally:
            await src.aclose()

    events = asyncio.run(go())
    by_id = {e.id: e for e in events}
    assert set(by_id) == {"501", "502", "503"}

    computed = by_id["501"]
    assert computed.date == date(2024, 1, 15)
    assert computed.product_id == "P-100"
    assert computed.voc_mass == pytest.approx(40.0)
    assert computed.hap_mass == pytest.approx(8.34)

    stored = by_id["502"]
    assert stored.voc_mass == 99.0
    assert stored.hap_mass == 1.5
    assert stored.usage_class.value == "non-automotive-specialty"

    orphan = by_id["503"]
    assert orphan.product_id == "99"
    assert orphan.voc_mass == 7.0


def test_sharepoint_usage_without_product_or_masses_makes_list_unavailable():
    async def go():
        src = _sharepoint(FakeGraph())
        try:
            return await src.load_usage(products=[])
        finally:
            await src.aclose()

    with pytest.raises(UpstreamUnavailable) as exc:
        asyncio.run(go())
    assert exc.value.details["list"] == "usage"
    assert exc.value.details["item_id"] == "501"
    assert exc.value.details["cause"] == "ConfigurationError"


@pytest.mark.parametrize("code", [5, "5", 5.0])
def test_sharepoint_pds_type_code_sets_category(code):
    item = {"id": "12", "fields": {**PRODUCT_ITEM["fields"], "Title": "P-500", "Category": "", "ProductType": code}}

    async def go():
        src = _sharepoint(FakeGraph(products=[item]))
        try:
            return await src.list_products()
        finally:
            await src.aclose()

    [p] = asyncio.run(go())
    assert p.category.value == "Clearcoat"
    assert p.usage_class.value == "automotive"
    assert product_to_fields(p)["ProductType"] == 5


def test_sharepoint_choice_product_type_is_usage_class():
    item = {"id": "13", "fields": {**PRODUCT_ITEM["fields"], "Title": "P-600", "ProductType": "non-automotive"}}

    async def go():
        src = _sharepoint(FakeGraph(products=[item]))
        try:
            return await src.list_products()
        finally:
            await src.aclose()

    [p] = asyncio.run(go())
    assert p.category.value == "Basecoat"
    assert p.usage_class.value == "non-automotive-specialty"
    assert product_to_fields(p)["ProductType"] == 1


def test_sharepoint_unreadable_product_degrades_refresh():
    item = {"id": "14", "fields": {**PRODUCT_ITEM["fields"], "Category": "", "ProductType": 4}}
    fallback = InMemoryDataSource(products=[SAMPLE_PRODUCTS[0]])
    fallback.name = "demo"

    async def go():
        tracker = EmissionsTracker(_sharepoint(FakeGraph(products=[item])), fallback=fallback)
        try:
            return tracker, await tracker.refresh()
        finally:
            await tracker.source.aclose()

    tracker, ok = asyncio.run(go())
    assert ok is False
    assert tracker.degraded is True
    assert tracker.loaded_from == "demo"
    assert tracker.advisories[0]["message"].startswith("sharepoint unavailable")


def test_sharepoint_append_and_add_product(log):
    graph = FakeGraph()

    async def go():
        src = _sharepoint(graph)
        try:
            await src.list_products()
            ev = log.prepare(date="2024-02-01", product_id="P-100", emission_unit_id="EU-CoatingLine-01", gallons=10)
            new_id = await src.append_usage(ev)
            saved = await src.add_product(log.catalog.get("P-200"))
            return new_id, saved
        finally:
            await src.aclose()

    new_id, saved = asyncio.run(go())
    assert new_id == "777"
    assert saved.remote_item_id == "777"
    usage_path, usage_fields = graph.posted[0]
    assert usage_path == "/sites/site-1/lists/lu/items"
    assert usage_fields["ProductIDLookupId"] == "11"
    assert usage_fields["VOC_Lbs"] == pytest.approx(40.0)
    product_fields = graph.posted[1][1]
    assert product_fields["HAP_Percent"] == pytest.approx(24.0)


def test_sharepoint_append_needs_known_product(log):
    async def go():
        src = _sharepoint(FakeGraph())
        try:
            ev = log.prepare(date="2024-02-01", product_id="P-200", emission_unit_id="A", gallons=1)
            await src.append_usage(ev)
        finally:
            await src.aclose()

    with pytest.raises(ConfigurationError):
        asyncio.run(go())


@pytest.mark.parametrize("failure", [503, 429, "connect"])
def test_sharepoint_failures_become_upstream_unavailable(failure):
    async def go():
        src = _sharepoint(FakeGraph(fail_with=failure))
        try:
            await src.list_products()
        finally:
            await src.aclose()

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(go())


def test_in_memory_source_filters_by_date(log, jan_event):
    log.record(date="2024-03-01", product_id="P-100", emission_unit_id="A", gallons=1)
    src = InMemoryDataSource(products=log.catalog.list(), events=log.snapshot())
    events = asyncio.run(src.load_usage("2024-02-01", "2024-03-31"))
    assert [e.date for e in events] == [date(2024, 3, 1)]
    assert len(asyncio.run(src.list_emission_units())) == 3


def test_demo_source_is_deterministic():
    end = date(2024, 6, 30)
    a = generate_sample_usage(SAMPLE_PRODUCTS, end=end, days=30, seed=7)
    b = generate_sample_usage(SAMPLE_PRODUCTS, end=end, days=30, seed=7)
    assert a == b
    assert all(e.date.weekday() < 5 for e in a)
    assert all(5.0 <= e.gallons <= 55.0 for e in a)
    src = demo_data_source(Settings(DEMO_DAYS=30), end=end)
    assert src.name == "demo"
    assert len(asyncio.run(src.list_products())) == len(SAMPLE_PRODUCTS)


def test_get_data_source_modes(sqlite_url):
    assert get_data_source(Settings(DATA_SOURCE="demo", DEMO_DAYS=10)).name == "demo"
    assert get_data_source(Settings(DATA_SOURCE="sql", DATABASE_URL=sqlite_url)).name == "sql"
    with pytest.raises(ConfigurationError):
        get_data_source(Settings(DATA_SOURCE="sharepoint", SHAREPOINT_SITE_URL=""))
    with pytest.raises(ConfigurationError):
        get_data_source(Settings(DATA_SOURCE="ftp"))


def test_sql_store_round_trip(sqlite_url, log, catalog):
    async def go():
        src = SqlDataSource(sqlite_url)
        try:
            units = await src.list_emission_units()
            for p in catalog.list():
                await src.add_product(p)
            ev1 = log.record(date="2024-01-15", product_id="P-100", emission_unit_id="EU-CoatingLine-01", gallons=10)
            ev2 = log.record(date="2024-02-15", product_id="P-200", emission_unit_id="EU-CoatingLine-02", gallons=2)
            await src.append_usage(ev1)
            await src.append_usage(ev2)
            with pytest.raises(ValidationError):
                await src.append_usage(ev1)
            return units, await src.list_products(), await src.load_usage(), await src.load_usage(end="2024-01-31")
        finally:
            await src.aclose()

    units, products, events, january = asyncio.run(go())
    assert [u.id for u in units] == list(EMISSION_UNIT_IDS)
    assert {p.id for p in products} == {"P-100", "P-200"}
    assert [e.id for e in events] == [e.id for e in log.snapshot()]
    assert events[0].voc_mass == pytest.approx(40.0)
    assert events[0].date == date(2024, 1, 15)
    assert events[1].category.value == "Clearcoat"
    assert len(january) == 1
