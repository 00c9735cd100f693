from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import date
from typing import Any, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from voc_tracker.db.models import EmissionUnitRecord, ProductRecord, UsageEventRecord
from voc_tracker.db.session import init_db, make_engine
from voc_tracker.engine.models import (
    ChemicalComponent,
    EmissionUnit,
    MassSet,
    Product,
    UsageEvent,
    parse_category,
    parse_usage_class,
)
from voc_tracker.engine.periods import to_date
from voc_tracker.errors import UpstreamUnavailable, ValidationError
from voc_tracker.services.sources import DataSource

logger = logging.getLogger(__name__)


def _product_from_record(r: ProductRecord) -> Product:
    try:
        comp = json.loads(r.chemical_composition_json or "[]")
    except ValueError:
        comp = []
    return Product(
        id=r.id,
        name=r.name or "",
        number=r.number or "",
        supplier=r.supplier or "",
        category=r.category,
        usage_class=r.usage_class or "automotive",
        specific_gravity=r.specific_gravity,
        voc_content=r.voc_content or 0.0,
        hap_fraction_by_volume=r.hap_fraction_by_volume or 0.0,
        dibasic_ester_fraction_by_volume=r.dibasic_ester_fraction_by_volume or 0.0,
        ethylbenzene_fraction_by_volume=r.ethylbenzene_fraction_by_volume or 0.0,
        cumene_fraction_by_volume=r.cumene_fraction_by_volume or 0.0,
        chemical_composition=tuple(ChemicalComponent(**c) for c in comp if isinstance(c, dict)),
    )


def _event_from_record(r: UsageEventRecord) -> UsageEvent:
    return UsageEvent(
        id=r.event_id,
        date=r.usage_date,
        product_id=r.product_id,
        emission_unit_id=r.emission_unit_id,
        usage_class=parse_usage_class(r.usage_class),
        gallons=float(r.gallons),
        masses=MassSet(
            voc=r.voc_lbs or 0.0,
            hap=r.hap_lbs or 0.0,
            dibasic_ester=r.dibasic_ester_lbs or 0.0,
            ethylbenzene=r.ethylbenzene_lbs or 0.0,
            cumene=r.cumene_lbs or 0.0,
        ),
        product_number=r.product_number or "",
        product_name=r.product_name or "",
        category=parse_category(r.category) if r.category else None,
    )


class SqlDataSource(DataSource):
    """Local database store (SQLite by default)."""

    name = "sql"

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._init_lock = threading.Lock()

    def _session(self) -> Session:
        # tables and seed units are created on first use, inside the worker thread
        with self._init_lock:
            if self.SessionLocal is None:
                engine = make_engine(self.database_url)
                self.SessionLocal = init_db(engine)
                self.engine = engine
        return self.SessionLocal()

    async def _run(self, fn, *args: Any):
        try:
            return await asyncio.to_thread(fn, *args)
        except IntegrityError as e:
            raise ValidationError(f"Store rejected the record: {e.orig}") from e
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(f"Database error: {e}", {"database_url": self.database_url}) from e
        except OSError as e:
            raise UpstreamUnavailable(f"Database not reachable: {e}", {"database_url": self.database_url}) from e

    def _list_products(self) -> List[Product]:
        with self._session() as s:
            rows = s.execute(select(ProductRecord).order_by(ProductRecord.id)).scalars().all()
            return [_product_from_record(r) for r in rows]

    def _list_units(self) -> List[EmissionUnit]:
        with self._session() as s:
            rows = (
                s.execute(
                    select(EmissionUnitRecord)
                    .where(EmissionUnitRecord.active == True)  # noqa: E712
                    .order_by(EmissionUnitRecord.id)
                )
                .scalars()
                .all()
            )
            return [EmissionUnit(id=r.id, display_name=r.display_name or "", active=True, description=r.description or "") for r in rows]

    def _load_usage(self, start: Optional[date], end: Optional[date]) -> List[UsageEvent]:
        with self._session() as s:
            q = select(UsageEventRecord)
            if start is not None:
                q = q.where(UsageEventRecord.usage_date >= start)
            if end is not None:
                q = q.where(UsageEventRecord.usage_date <= end)
            rows = s.execute(q.order_by(UsageEventRecord.seq)).scalars().all()
            return [_event_from_record(r) for r in rows]

    def _append_usage(self, event: UsageEvent) -> str:
        with self._session() as s:
            s.add(
                UsageEventRecord(
                    event_id=event.id,
                    usage_date=event.date,
                    product_id=event.product_id,
                    product_number=event.product_number,
                    product_name=event.product_name,
                    category=event.category.value if event.category else None,
                    emission_unit_id=event.emission_unit_id,
                    usage_class=event.usage_class.value,
                    gallons=event.gallons,
                    voc_lbs=event.masses.voc,
                    hap_lbs=event.masses.hap,
                    dibasic_ester_lbs=event.masses.dibasic_ester,
                    ethylbenzene_lbs=event.masses.ethylbenzene,
                    cumene_lbs=event.masses.cumene,
                )
            )
            s.commit()
        return event.id

    def _add_product(self, product: Product) -> Product:
        with self._session() as s:
            s.merge(
                ProductRecord(
                    id=product.id,
                    name=product.name,
                    number=product.number,
                    supplier=product.supplier,
                    category=product.category.value,
                    usage_class=product.usage_class.value,
                    specific_gravity=product.specific_gravity,
                    voc_content=product.voc_content,
                    hap_fraction_by_volume=product.hap_fraction_by_volume,
                    dibasic_ester_fraction_by_volume=product.dibasic_ester_fraction_by_volume,
                    ethylbenzene_fraction_by_volume=product.ethylbenzene_fraction_by_volume,
                    cumene_fraction_by_volume=product.cumene_fraction_by_volume,
                    chemical_composition_json=json.dumps(
                        [c.to_dict() for c in product.chemical_composition], ensure_ascii=False
                    ),
                )
            )
            s.commit()
        return product

    async def list_products(self) -> List[Product]:
        return await self._run(self._list_products)

    async def list_emission_units(self) -> List[EmissionUnit]:
        return await self._run(self._list_units)

    async def load_usage(self, start: Any = None, end: Any = None, products: Sequence[Product] = ()) -> List[UsageEvent]:
        s = to_date(start) if start is not None else None
        e = to_date(end) if end is not None else None
        return await self._run(self._load_usage, s, e)

    async def append_usage(self, event: UsageEvent) -> str:
        event_id = await self._run(self._append_usage, event)
        logger.debug("Stored usage event %s", event_id)
        return event_id

    async def add_product(self, product: Product) -> Product:
        return await self._run(self._add_product, product)

    async def aclose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
