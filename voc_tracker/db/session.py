from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from voc_tracker.engine.models import DEFAULT_EMISSION_UNITS

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///") :]
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _seed_emission_units(SessionLocal: sessionmaker) -> None:
    """Empty DB gets the three permitted coating lines."""
    from voc_tracker.db.models import EmissionUnitRecord

    with SessionLocal() as s:
        if s.execute(select(EmissionUnitRecord).limit(1)).scalars().first():
            return
        s.add_all(
            [
                EmissionUnitRecord(id=u.id, display_name=u.display_name, description=u.description, active=u.active)
                for u in DEFAULT_EMISSION_UNITS
            ]
        )
        s.commit()
        logger.info("Seeded %d emission units", len(DEFAULT_EMISSION_UNITS))


def init_db(engine: Engine) -> sessionmaker:
    from voc_tracker.db.models import Base

    Base.metadata.create_all(bind=engine)
    SessionLocal = make_session_factory(engine)
    _seed_emission_units(SessionLocal)
    return SessionLocal
