import datetime

from pydantic import BaseModel


class ChemicalComponentIn(BaseModel):
    chemical_name: str
    cas_number: str
    weight_fraction: float
    is_hazardous_air_pollutant: bool = False


class ProductCreate(BaseModel):
    id: str
    name: str
    number: str = ""
    supplier: str = ""
    category: str  # Basecoat / Hardener / Clearcoat / Solvent or PDS type code
    usage_class: str = "automotive"
    specific_gravity: float
    voc_content: float  # lb/gal
    hap_fraction_by_volume: float = 0.0
    dibasic_ester_fraction_by_volume: float = 0.0
    ethylbenzene_fraction_by_volume: float = 0.0
    cumene_fraction_by_volume: float = 0.0
    chemical_composition: list[ChemicalComponentIn] = []


class ProductOut(BaseModel):
    id: str
    name: str
    number: str
    supplier: str
    category: str
    usage_class: str
    specific_gravity: float
    voc_content: float
    hap_fraction_by_volume: float
    dibasic_ester_fraction_by_volume: float
    ethylbenzene_fraction_by_volume: float
    cumene_fraction_by_volume: float
    chemical_composition: list[ChemicalComponentIn]


class UsageCreate(BaseModel):
    date: datetime.date
    product_id: str
    emission_unit_id: str
    gallons: float
    usage_class: str | None = None  # defaults to the product's class


class UsageOut(BaseModel):
    id: str
    date: datetime.date
    product_id: str
    product_number: str
    product_name: str
    category: str | None
    emission_unit_id: str
    usage_class: str
    gallons: float
    voc_lbs: float
    hap_lbs: float
    dibasic_ester_lbs: float
    ethylbenzene_lbs: float
    cumene_lbs: float


class ImportResult(BaseModel):
    imported: int
    ids: list[str]
