from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from voc_tracker.config import Settings, settings
from voc_tracker.engine.aggregation import (
    AggregatePeriodResult,
    aggregate,
    daily_use,
    material_use,
    trend_series,
)
from voc_tracker.engine.calculator import material_content_report
from voc_tracker.engine.limits import PERMIT_LIMITS, RegulatoryLimit, evaluate_period, load_limits
from voc_tracker.engine.models import DEFAULT_EMISSION_UNITS, EmissionUnit, Product, UsageEvent
from voc_tracker.engine.periods import to_date
from voc_tracker.errors import UpstreamUnavailable, VocTrackerError
from voc_tracker.services.catalog import ProductCatalog
from voc_tracker.services.reports import build_report
from voc_tracker.services.sources import DataSource, demo_data_source, empty_data_source, get_data_source
from voc_tracker.services.usage_log import UsageLog

logger = logging.getLogger(__name__)

MAX_ADVISORIES = 20


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class EmissionsTracker:
    """Holds the current catalog/usage snapshot and runs the pure engine over it.

    Store failures during `refresh` are downgraded to advisories; the tracker
    then keeps its last-known snapshot or loads the fallback source.
    """

    def __init__(
        self,
        source: DataSource,
        *,
        fallback: Optional[DataSource] = None,
        limits: Sequence[RegulatoryLimit] = PERMIT_LIMITS,
        emission_units: Iterable[EmissionUnit] = DEFAULT_EMISSION_UNITS,
    ):
        self.source = source
        self.fallback = fallback
        self.limits: Tuple[RegulatoryLimit, ...] = tuple(limits)
        self.emission_units: List[EmissionUnit] = list(emission_units)
        self.catalog = ProductCatalog()
        self.log = UsageLog(self.catalog, emission_unit_ids=self.unit_ids)
        self.advisories: List[Dict[str, Any]] = []
        self.degraded = False
        self.loaded_from: Optional[str] = None

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "EmissionsTracker":
        source = get_data_source(cfg)
        if source.name == "demo":
            fallback = empty_data_source()
        elif cfg.FALLBACK_TO_DEMO:
            fallback = demo_data_source(cfg)
        else:
            fallback = empty_data_source()
        return cls(source, fallback=fallback, limits=load_limits(cfg.PERMIT_LIMITS_FILE))

    @property
    def unit_ids(self) -> Tuple[str, ...]:
        return tuple(u.id for u in self.emission_units if u.active)

    def _advise(self, message: str, **details: Any) -> None:
        self.advisories.append({"level": "warning", "message": message, "at": _utcnow(), "details": details})
        del self.advisories[:-MAX_ADVISORIES]

    async def _fetch(self, src: DataSource) -> Tuple[List[Product], List[EmissionUnit], List[UsageEvent]]:
        products = await src.list_products()
        units = await src.list_emission_units()
        events = await src.load_usage(products=products)
        return products, units, events

    def _install(self, products: List[Product], units: List[EmissionUnit], events: List[UsageEvent], origin: str) -> None:
        catalog = ProductCatalog(products)
        if units:
            self.emission_units = list(units)
        self.catalog = catalog
        self.log = UsageLog(catalog, events, emission_unit_ids=self.unit_ids)
        self.loaded_from = origin
        logger.info("Loaded %d products and %d usage events from %s", len(catalog), len(events), origin)

    async def refresh(self) -> bool:
        """Reload from the primary source. Returns False when running degraded."""
        try:
            snapshot = await self._fetch(self.source)
        except UpstreamUnavailable as e:
            logger.warning("Data source %s unavailable: %s", self.source.name, e.message)
            self.degraded = True
            if self.loaded_from is not None:
                self._advise(
                    f"{self.source.name} unavailable; showing last loaded data from {self.loaded_from}.",
                    error=e.message,
                )
                return False
            await self._load_fallback(e)
            return False
        self._install(*snapshot, origin=self.source.name)
        self.degraded = False
        return True

    async def _load_fallback(self, cause: UpstreamUnavailable) -> None:
        if self.fallback is not None:
            try:
                self._install(*(await self._fetch(self.fallback)), origin=self.fallback.name)
                self._advise(
                    f"{self.source.name} unavailable; using {self.fallback.name} data.",
                    error=cause.message,
                )
                return
            except UpstreamUnavailable as e:
                logger.warning("Fallback source %s unavailable: %s", self.fallback.name, e.message)
        self._install([], [], [], origin="empty")
        self._advise(f"{self.source.name} unavailable; no data loaded.", error=cause.message)

    async def log_usage(
        self,
        *,
        date: Any,
        product_id: str,
        emission_unit_id: str,
        gallons: Any,
        usage_class: Any = None,
    ) -> UsageEvent:
        """Persist first, then append; a store failure leaves the local log untouched."""
        event = self.log.prepare(
            date=date,
            product_id=product_id,
            emission_unit_id=emission_unit_id,
            gallons=gallons,
            usage_class=usage_class,
        )
        event = await self._persist(event)
        logger.info("Logged %.2f gal of %s on %s (%s)", event.gallons, event.product_id, event.date, event.emission_unit_id)
        return event

    async def _persist(self, event: UsageEvent) -> UsageEvent:
        # checked before the store write; the append below cannot fail
        self.log.check(event)
        persisted_id = str(await self.source.append_usage(event) or "")
        if persisted_id and persisted_id != event.id:
            if self.log.has_event(persisted_id):
                self._advise(
                    f"{self.source.name} returned id {persisted_id} already in the log; kept local id {event.id}.",
                    event_id=event.id,
                    store_id=persisted_id,
                )
            else:
                event = dataclasses.replace(event, id=persisted_id)
        self.log.append(event)
        return event

    async def import_usage(self, events: Iterable[UsageEvent]) -> List[UsageEvent]:
        """Store prepared events one by one; stops at the first failure.

        The raised error's details carry `imported` and `imported_ids` for the
        rows stored before it.
        """
        out: List[UsageEvent] = []
        for ev in events:
            try:
                out.append(await self._persist(ev))
            except VocTrackerError as e:
                e.details.update({"imported": len(out), "imported_ids": [x.id for x in out], "failed_event_id": ev.id})
                logger.warning("Import stopped after %d usage events: %s", len(out), e.message)
                raise
        logger.info("Imported %d usage events", len(out))
        return out

    async def add_product(self, product: Product) -> Product:
        saved = await self.source.add_product(product)
        return self.catalog.upsert(saved)

    def replace_usage(self, events: Iterable[UsageEvent]) -> int:
        return self.log.replace_snapshot(events)

    # -- pure engine over the current snapshot

    def periods(self, as_of: Any = None, horizon_months: Optional[int] = None) -> List[AggregatePeriodResult]:
        anchor = to_date(as_of) if as_of is not None else date.today()
        horizon = settings.REPORT_HORIZON_MONTHS if horizon_months is None else int(horizon_months)
        return aggregate(self.log.snapshot(), anchor, horizon, self.unit_ids)

    def report(self, as_of: Any = None, horizon_months: Optional[int] = None) -> Dict[str, Any]:
        periods = self.periods(as_of, horizon_months)
        return build_report(
            periods,
            unit_ids=self.unit_ids,
            limits=self.limits,
            advisories=self.advisories,
            source=self.loaded_from or self.source.name,
        )

    def limit_status(self, as_of: Any = None) -> List[Dict[str, Any]]:
        return evaluate_period(self.periods(as_of, 1)[0], self.limits)

    def trend(self, as_of: Any = None, months: Optional[int] = None) -> List[Dict[str, Any]]:
        n = settings.TREND_HORIZON_MONTHS if months is None else int(months)
        return trend_series(self.periods(as_of, n), n)

    def material_use(self, as_of: Any = None, horizon_months: Optional[int] = None) -> List[Dict[str, Any]]:
        return material_use(self.periods(as_of, horizon_months), self.unit_ids)

    def daily_use(self, year: int, month: int) -> Dict[str, List[Dict[str, Any]]]:
        return daily_use(self.log.snapshot(), year, month, self.unit_ids)

    def material_content(self) -> List[Dict[str, Any]]:
        return material_content_report(self.catalog.list())

    def status(self) -> Dict[str, Any]:
        return {
            "source": self.source.name,
            "loaded_from": self.loaded_from,
            "degraded": self.degraded,
            "advisories": list(self.advisories),
            "products": len(self.catalog),
            "usage_events": len(self.log),
            "emission_units": list(self.unit_ids),
        }
