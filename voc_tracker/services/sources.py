from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence

from voc_tracker.config import Settings, settings
from voc_tracker.engine.models import DEFAULT_EMISSION_UNITS, EmissionUnit, Product, UsageEvent
from voc_tracker.engine.periods import to_date
from voc_tracker.errors import ConfigurationError
from voc_tracker.services.demo_data import SAMPLE_PRODUCTS, generate_sample_usage

logger = logging.getLogger(__name__)


class DataSource:
    """Store of products, emission units and usage events.

    Calls are asynchronous; failures of a remote store raise UpstreamUnavailable.
    """

    name = "base"

    async def list_products(self) -> List[Product]:
        raise NotImplementedError

    async def list_emission_units(self) -> List[EmissionUnit]:
        raise NotImplementedError

    async def load_usage(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        products: Sequence[Product] = (),
    ) -> List[UsageEvent]:
        raise NotImplementedError

    async def append_usage(self, event: UsageEvent) -> str:
        raise NotImplementedError

    async def add_product(self, product: Product) -> Product:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _in_range(d: date, start: Optional[date], end: Optional[date]) -> bool:
    return (start is None or d >= start) and (end is None or d <= end)


class InMemoryDataSource(DataSource):
    name = "memory"

    def __init__(
        self,
        products: Iterable[Product] = (),
        emission_units: Iterable[EmissionUnit] = DEFAULT_EMISSION_UNITS,
        events: Iterable[UsageEvent] = (),
    ):
        self._products = {p.id: p for p in products}
        self._units = list(emission_units)
        self._events = list(events)

    async def list_products(self) -> List[Product]:
        return list(self._products.values())

    async def list_emission_units(self) -> List[EmissionUnit]:
        return [u for u in self._units if u.active]

    async def load_usage(
        self,
        start: Any = None,
        end: Any = None,
        products: Sequence[Product] = (),
    ) -> List[UsageEvent]:
        s = to_date(start) if start is not None else None
        e = to_date(end) if end is not None else None
        return [ev for ev in self._events if _in_range(ev.date, s, e)]

    async def append_usage(self, event: UsageEvent) -> str:
        self._events.append(event)
        return event.id

    async def add_product(self, product: Product) -> Product:
        self._products[product.id] = product
        return product


def demo_data_source(cfg: Settings = settings, end: Optional[date] = None) -> InMemoryDataSource:
    events = generate_sample_usage(SAMPLE_PRODUCTS, end=end, days=int(cfg.DEMO_DAYS), seed=int(cfg.DEMO_SEED))
    logger.info("Demo data source with %d products and %d usage events", len(SAMPLE_PRODUCTS), len(events))
    src = InMemoryDataSource(products=SAMPLE_PRODUCTS, events=events)
    src.name = "demo"
    return src


def empty_data_source() -> InMemoryDataSource:
    src = InMemoryDataSource()
    src.name = "empty"
    return src


def get_data_source(cfg: Settings = settings) -> DataSource:
    """Data source selected by DATA_SOURCE=demo|sharepoint|sql."""
    mode = (cfg.DATA_SOURCE or "demo").strip().lower()
    if mode == "sharepoint":
        from voc_tracker.services.sharepoint import SharePointDataSource

        if not cfg.SHAREPOINT_SITE_URL:
            raise ConfigurationError("SHAREPOINT_SITE_URL is required for the sharepoint data source.")
        return SharePointDataSource.from_settings(cfg)
    if mode == "sql":
        from voc_tracker.services.sql_store import SqlDataSource

        return SqlDataSource(cfg.DATABASE_URL)
    if mode == "demo":
        return demo_data_source(cfg)
    raise ConfigurationError(f"Unknown DATA_SOURCE: {cfg.DATA_SOURCE!r}")
