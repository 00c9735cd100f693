"""SharePoint list store accessed through the Microsoft Graph API.

Lists:
  VOC_Products       Title (product id), ProductName, ProductNumber, Supplier, Category,
                     ProductType, SpecificGravity, VOC_LbsGal, HAP_Percent,
                     DibasicEster_Percent, Ethylbenzene_Percent, Cumene_Percent
  VOC_UsageLog       Title, UsageDate, ProductID (lookup), EmissionUnit, PartType, Gallons,
                     VOC_Lbs, HAP_Lbs, Cumene_Lbs, DibasicEster_Lbs, Ethylbenzene_Lbs,
                     Category, ProductType
  VOC_EmissionUnits  Title (unit id), UnitName, Description, IsActive

Percent columns hold 0-100 values; products carry 0-1 fractions. ProductType
is the PDS type code (1 Basecoat, 2 Hardener, 3 Solvent, 5 Clearcoat).
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import httpx

from voc_tracker.config import Settings
from voc_tracker.engine.calculator import compute_masses
from voc_tracker.engine.models import (
    PDS_TYPE_CODES,
    EmissionUnit,
    MassSet,
    Product,
    ProductCategory,
    UsageClass,
    UsageEvent,
    parse_category,
    parse_usage_class,
)
from voc_tracker.engine.periods import month_bounds, to_date
from voc_tracker.errors import ConfigurationError, UpstreamUnavailable, ValidationError, VocTrackerError
from voc_tracker.services.sources import DataSource

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# Stored-mass columns of the usage list -> MassSet field
_MASS_COLUMNS = {
    "VOC_Lbs": "voc",
    "HAP_Lbs": "hap",
    "DibasicEster_Lbs": "dibasic_ester",
    "Ethylbenzene_Lbs": "ethylbenzene",
    "Cumene_Lbs": "cumene",
}


def _to_float(x: Any) -> float:
    try:
        if x is None or x == "":
            return 0.0
        return float(x)
    except (TypeError, ValueError):
        return 0.0


def _product_type(value: Any) -> Tuple[Optional[ProductCategory], Optional[UsageClass]]:
    """ProductType holds the PDS type code; lists set up from the choice template hold the usage class."""
    if value is None or value == "":
        return None, None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return parse_category(value), None
    s = str(value).strip()
    if s.replace(".", "", 1).isdigit():
        return parse_category(float(s)), None
    return None, parse_usage_class(s)


def product_from_item(item: Dict[str, Any]) -> Product:
    f = item.get("fields") or {}
    type_category, type_usage = _product_type(f.get("ProductType"))
    return Product(
        id=f.get("Title"),
        name=str(f.get("ProductName") or ""),
        number=str(f.get("ProductNumber") or f.get("Title") or ""),
        supplier=str(f.get("Supplier") or ""),
        category=f.get("Category") or type_category or "",
        usage_class=type_usage or UsageClass.AUTOMOTIVE,
        specific_gravity=_to_float(f.get("SpecificGravity")) or 1.0,
        voc_content=_to_float(f.get("VOC_LbsGal")),
        hap_fraction_by_volume=_to_float(f.get("HAP_Percent")) / 100.0,
        dibasic_ester_fraction_by_volume=_to_float(f.get("DibasicEster_Percent")) / 100.0,
        ethylbenzene_fraction_by_volume=_to_float(f.get("Ethylbenzene_Percent")) / 100.0,
        cumene_fraction_by_volume=_to_float(f.get("Cumene_Percent")) / 100.0,
        remote_item_id=str(item.get("id")) if item.get("id") is not None else None,
    )


def product_to_fields(product: Product) -> Dict[str, Any]:
    return {
        "Title": product.id,
        "ProductName": product.name,
        "ProductNumber": product.number or product.id,
        "Supplier": product.supplier,
        "Category": product.category.value,
        "ProductType": PDS_TYPE_CODES[product.category],
        "SpecificGravity": product.specific_gravity,
        "VOC_LbsGal": product.voc_content,
        "HAP_Percent": product.hap_fraction_by_volume * 100.0,
        "DibasicEster_Percent": product.dibasic_ester_fraction_by_volume * 100.0,
        "Ethylbenzene_Percent": product.ethylbenzene_fraction_by_volume * 100.0,
        "Cumene_Percent": product.cumene_fraction_by_volume * 100.0,
    }


def usage_from_item(item: Dict[str, Any], by_remote_id: Dict[str, Product]) -> UsageEvent:
    """Map a usage list item, resolving the product lookup id.

    Stored masses are kept as logged; they are only computed when the item has none.
    """
    f = item.get("fields") or {}
    lookup = f.get("ProductIDLookupId")
    product = by_remote_id.get(str(lookup)) if lookup is not None else None
    gallons = _to_float(f.get("Gallons"))

    if any(f.get(col) is not None for col in _MASS_COLUMNS):
        masses = MassSet(**{attr: _to_float(f.get(col)) for col, attr in _MASS_COLUMNS.items()})
    elif product is not None:
        masses = compute_masses(gallons, product)
    else:
        raise ConfigurationError(
            f"Usage item {item.get('id')} references unknown product lookup {lookup!r} and has no stored masses.",
            {"item_id": item.get("id"), "lookup_id": lookup},
        )

    try:
        category = parse_category(f.get("Category")) if f.get("Category") else (product.category if product else None)
    except ValidationError:
        category = product.category if product else None

    part_type = f.get("PartType")
    if part_type:
        usage_class = parse_usage_class(part_type)
    else:
        usage_class = product.usage_class if product else UsageClass.AUTOMOTIVE

    return UsageEvent(
        id=str(item.get("id")),
        date=to_date(f.get("UsageDate")),
        product_id=product.id if product else str(f.get("ProductID") or lookup or ""),
        emission_unit_id=str(f.get("EmissionUnit") or ""),
        usage_class=usage_class,
        gallons=gallons,
        masses=masses,
        product_number=product.number if product else "",
        product_name=product.name if product else str(f.get("ProductID") or ""),
        category=category,
    )


def _map_items(list_key: str, items: List[Dict[str, Any]], fn: Callable[[Dict[str, Any]], Any]) -> List[Any]:
    """Map list items; an item that cannot be read makes the whole list unavailable."""
    out = []
    for it in items:
        try:
            out.append(fn(it))
        except VocTrackerError as e:
            raise UpstreamUnavailable(
                f"SharePoint {list_key} item {it.get('id')} could not be read: {e.message}",
                {"list": list_key, "item_id": it.get("id"), "cause": type(e).__name__, **e.details},
            ) from e
    return out


class SharePointDataSource(DataSource):
    name = "sharepoint"

    def __init__(
        self,
        site_url: str,
        access_token: Optional[str] = None,
        *,
        products_list: str = "VOC_Products",
        usage_list: str = "VOC_UsageLog",
        units_list: str = "VOC_EmissionUnits",
        base_url: str = GRAPH_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.site_url = site_url
        self.lists = {"products": products_list, "usage": usage_list, "units": units_list}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        if access_token:
            self.set_access_token(access_token)
        self._site_id: Optional[str] = None
        self._list_ids: Dict[str, str] = {}
        # product id -> list item id, for the usage lookup column
        self._remote_ids: Dict[str, str] = {}

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SharePointDataSource":
        return cls(
            cfg.SHAREPOINT_SITE_URL,
            cfg.GRAPH_ACCESS_TOKEN,
            products_list=cfg.SHAREPOINT_PRODUCTS_LIST,
            usage_list=cfg.SHAREPOINT_USAGE_LIST,
            units_list=cfg.SHAREPOINT_UNITS_LIST,
            base_url=cfg.GRAPH_BASE_URL,
            timeout=float(cfg.HTTP_TIMEOUT_SECONDS),
        )

    def set_access_token(self, token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"SharePoint request failed: {e}", {"url": url}) from e
        if resp.is_error:
            message = resp.reason_phrase
            try:
                message = (resp.json().get("error") or {}).get("message") or message
            except ValueError:
                pass
            raise UpstreamUnavailable(
                f"SharePoint {method} {url} failed: {message}",
                {"status_code": resp.status_code},
            )
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"SharePoint returned invalid JSON for {url}") from e

    async def _get_items(self, url: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        data = await self._request("GET", url, params=params)
        items.extend(data.get("value") or [])
        next_link = data.get("@odata.nextLink")
        while next_link:
            data = await self._request("GET", next_link)
            items.extend(data.get("value") or [])
            next_link = data.get("@odata.nextLink")
        return items

    async def site_id(self) -> str:
        if self._site_id:
            return self._site_id
        parsed = urlparse(self.site_url)
        if not parsed.hostname:
            raise ConfigurationError(f"Invalid SharePoint site URL: {self.site_url!r}")
        site = await self._request("GET", f"/sites/{parsed.hostname}:{parsed.path or '/'}")
        self._site_id = str(site["id"])
        return self._site_id

    async def list_id(self, key: str) -> str:
        name = self.lists[key]
        if name in self._list_ids:
            return self._list_ids[name]
        sid = await self.site_id()
        data = await self._request("GET", f"/sites/{sid}/lists", params={"$filter": f"displayName eq '{name}'"})
        values = data.get("value") or []
        if not values:
            raise UpstreamUnavailable(f"List '{name}' not found", {"list": name})
        self._list_ids[name] = str(values[0]["id"])
        return self._list_ids[name]

    async def _items_url(self, key: str) -> str:
        sid = await self.site_id()
        lid = await self.list_id(key)
        return f"/sites/{sid}/lists/{lid}/items"

    async def list_products(self) -> List[Product]:
        url = await self._items_url("products")
        items = await self._get_items(url, {"$expand": "fields", "$top": "500"})
        products = _map_items("products", items, product_from_item)
        for p in products:
            if p.remote_item_id:
                self._remote_ids[p.id] = p.remote_item_id
        return products

    async def list_emission_units(self) -> List[EmissionUnit]:
        url = await self._items_url("units")
        items = await self._get_items(url, {"$expand": "fields", "$filter": "fields/IsActive eq true"})
        out = []
        for it in items:
            f = it.get("fields") or {}
            out.append(
                EmissionUnit(
                    id=str(f.get("Title") or ""),
                    display_name=str(f.get("UnitName") or f.get("Title") or ""),
                    active=bool(f.get("IsActive", True)),
                    description=str(f.get("Description") or ""),
                )
            )
        return out

    async def load_usage(
        self,
        start: Any = None,
        end: Any = None,
        products: Sequence[Product] = (),
    ) -> List[UsageEvent]:
        params = {"$expand": "fields", "$top": "5000", "$orderby": "fields/UsageDate desc"}
        clauses = []
        if start is not None:
            clauses.append(f"fields/UsageDate ge '{to_date(start).isoformat()}'")
        if end is not None:
            clauses.append(f"fields/UsageDate le '{to_date(end).isoformat()}'")
        if clauses:
            params["$filter"] = " and ".join(clauses)
        url = await self._items_url("usage")
        items = await self._get_items(url, params)
        by_remote = {str(p.remote_item_id): p for p in products if p.remote_item_id}
        events = _map_items("usage", items, lambda it: usage_from_item(it, by_remote))
        logger.info("Loaded %d usage items from SharePoint", len(events))
        return events

    async def month_usage(self, year: int, month: int, products: Sequence[Product] = ()) -> List[UsageEvent]:
        start, end = month_bounds(int(year), int(month))
        return await self.load_usage(start, end, products)

    async def rolling_year_usage(self, today: Optional[date] = None, products: Sequence[Product] = ()) -> List[UsageEvent]:
        today = today or date.today()
        try:
            start = today.replace(year=today.year - 1)
        except ValueError:
            start = today.replace(year=today.year - 1, day=28)
        return await self.load_usage(start, None, products)

    async def append_usage(self, event: UsageEvent) -> str:
        item_id = self._remote_ids.get(event.product_id)
        if not item_id:
            raise ConfigurationError(
                f"Product {event.product_id} has no list item in SharePoint.",
                {"product_id": event.product_id},
            )
        fields = {
            "Title": f"{event.date.isoformat()}-{event.id}",
            "UsageDate": event.date.isoformat(),
            "ProductIDLookupId": item_id,
            "EmissionUnit": event.emission_unit_id,
            "PartType": event.usage_class.value,
            "Gallons": event.gallons,
            "Category": event.category.value if event.category else None,
        }
        for col, attr in _MASS_COLUMNS.items():
            fields[col] = event.masses.get(attr)
        url = await self._items_url("usage")
        result = await self._request("POST", url, json={"fields": fields})
        return str(result.get("id") or event.id)

    async def add_product(self, product: Product) -> Product:
        url = await self._items_url("products")
        result = await self._request("POST", url, json={"fields": product_to_fields(product)})
        saved = dataclasses.replace(product, remote_item_id=str(result.get("id")))
        self._remote_ids[saved.id] = str(saved.remote_item_id)
        return saved
