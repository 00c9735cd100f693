from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductRecord(Base):
    __tablename__ = "products"

    id = Column(String(100), primary_key=True)
    name = Column(String(200), default="")
    number = Column(String(100), default="")
    supplier = Column(String(200), default="")
    category = Column(String(50), nullable=False)
    usage_class = Column(String(50), default="automotive")

    specific_gravity = Column(Float, nullable=False, default=1.0)
    voc_content = Column(Float, nullable=False, default=0.0)  # lb/gal
    hap_fraction_by_volume = Column(Float, default=0.0)
    dibasic_ester_fraction_by_volume = Column(Float, default=0.0)
    ethylbenzene_fraction_by_volume = Column(Float, default=0.0)
    cumene_fraction_by_volume = Column(Float, default=0.0)

    chemical_composition_json = Column(Text, default="[]")

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class EmissionUnitRecord(Base):
    __tablename__ = "emission_units"

    id = Column(String(100), primary_key=True)
    display_name = Column(String(200), default="")
    description = Column(Text, default="")
    active = Column(Boolean, default=True)


class UsageEventRecord(Base):
    """Append-only; masses are the values computed when the entry was logged."""

    __tablename__ = "usage_events"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), unique=True, nullable=False, index=True)

    usage_date = Column(Date, nullable=False, index=True)
    product_id = Column(String(100), nullable=False, index=True)
    product_number = Column(String(100), default="")
    product_name = Column(String(200), default="")
    category = Column(String(50), nullable=True)
    emission_unit_id = Column(String(100), nullable=False, index=True)
    usage_class = Column(String(50), nullable=False)

    gallons = Column(Float, nullable=False)
    voc_lbs = Column(Float, default=0.0)
    hap_lbs = Column(Float, default=0.0)
    dibasic_ester_lbs = Column(Float, default=0.0)
    ethylbenzene_lbs = Column(Float, default=0.0)
    cumene_lbs = Column(Float, default=0.0)

    created_at = Column(DateTime(timezone=True), default=utcnow)
