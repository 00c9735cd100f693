from __future__ import annotations

import logging
import math
import uuid
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from voc_tracker.engine.calculator import compute_masses
from voc_tracker.engine.models import UsageEvent, parse_usage_class
from voc_tracker.engine.periods import to_date
from voc_tracker.errors import ValidationError
from voc_tracker.services.catalog import ProductCatalog

logger = logging.getLogger(__name__)


def _positive_gallons(value: Any) -> float:
    try:
        g = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"gallons must be a number, got {value!r}", {"gallons": value}) from e
    if not math.isfinite(g) or g <= 0:
        raise ValidationError(f"gallons must be positive, got {value!r}", {"gallons": value})
    return g


def new_event_id() -> str:
    return uuid.uuid4().hex


class UsageLog:
    """Append-only ledger of usage events.

    Corrections are new events; there is no update or delete. The whole log can
    only be swapped through `replace_snapshot` (bulk reload from a store).
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        events: Iterable[UsageEvent] = (),
        emission_unit_ids: Optional[Sequence[str]] = None,
    ):
        self.catalog = catalog
        self.emission_unit_ids = tuple(emission_unit_ids) if emission_unit_ids is not None else None
        self._events: List[UsageEvent] = list(events)

    def prepare(
        self,
        *,
        date: Any,
        product_id: str,
        emission_unit_id: str,
        gallons: Any,
        usage_class: Any = None,
        event_id: Optional[str] = None,
    ) -> UsageEvent:
        """Validate an entry and compute its masses from the current product record."""
        d = to_date(date)
        g = _positive_gallons(gallons)
        product = self.catalog.get(product_id)
        if product is None:
            raise ValidationError(f"Unknown product: {product_id!r}", {"product_id": product_id})
        unit = str(emission_unit_id or "").strip()
        if not unit:
            raise ValidationError("emission_unit_id is required.")
        if self.emission_unit_ids is not None and unit not in self.emission_unit_ids:
            raise ValidationError(f"Unknown emission unit: {unit!r}", {"emission_unit_id": unit})
        return UsageEvent(
            id=str(event_id or new_event_id()),
            date=d,
            product_id=product.id,
            emission_unit_id=unit,
            usage_class=parse_usage_class(usage_class) if usage_class else product.usage_class,
            gallons=g,
            masses=compute_masses(g, product),
            product_number=product.number,
            product_name=product.name,
            category=product.category,
        )

    def check(self, event: UsageEvent) -> None:
        """Raise ValidationError if `append(event)` would be rejected."""
        if not isinstance(getattr(event, "date", None), date):
            raise ValidationError("Usage event date is not a calendar date.", {"event_id": event.id})
        _positive_gallons(event.gallons)
        if event.product_id not in self.catalog:
            raise ValidationError(f"Unknown product: {event.product_id!r}", {"product_id": event.product_id})
        if self.has_event(event.id):
            raise ValidationError(f"Duplicate usage event id: {event.id}", {"event_id": event.id})

    def has_event(self, event_id: str) -> bool:
        return any(e.id == event_id for e in self._events)

    def append(self, event: UsageEvent) -> str:
        self.check(event)
        self._events.append(event)
        logger.debug("Appended usage event %s (%s, %.2f gal)", event.id, event.date, event.gallons)
        return event.id

    def record(self, **entry: Any) -> UsageEvent:
        ev = self.prepare(**entry)
        self.append(ev)
        return ev

    def query(
        self,
        start: Any = None,
        end: Any = None,
        emission_unit_id: Optional[str] = None,
    ) -> List[UsageEvent]:
        """Events in [start, end] ordered by date; equal dates keep insertion order."""
        s = to_date(start) if start is not None else None
        e = to_date(end) if end is not None else None
        rows = [
            ev
            for ev in self._events
            if (s is None or ev.date >= s)
            and (e is None or ev.date <= e)
            and (emission_unit_id is None or ev.emission_unit_id == emission_unit_id)
        ]
        return sorted(rows, key=lambda ev: ev.date)

    def replace_snapshot(self, events: Iterable[UsageEvent]) -> int:
        self._events = list(events)
        logger.info("Usage log replaced with %d events", len(self._events))
        return len(self._events)

    def snapshot(self) -> Tuple[UsageEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)
