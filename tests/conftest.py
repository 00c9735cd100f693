from datetime import date

import pytest

from voc_tracker.engine.models import Product
from voc_tracker.services.catalog import ProductCatalog
from voc_tracker.services.usage_log import UsageLog


def make_product(pid="P-100", **overrides) -> Product:
    kwargs = dict(
        id=pid,
        name="Test Basecoat",
        number=pid,
        supplier="Acme Coatings",
        category="Basecoat",
        specific_gravity=1.0,
        voc_content=4.0,
        hap_fraction_by_volume=0.10,
    )
    kwargs.update(overrides)
    return Product(**kwargs)


@pytest.fixture()
def product() -> Product:
    return make_product()


@pytest.fixture()
def catalog(product) -> ProductCatalog:
    return ProductCatalog(
        [
            product,
            make_product(
                "P-200",
                name="Clear G50S",
                category="Clearcoat",
                specific_gravity=0.982,
                voc_content=4.95,
                hap_fraction_by_volume=0.24,
                dibasic_ester_fraction_by_volume=0.001,
                ethylbenzene_fraction_by_volume=0.0005,
                cumene_fraction_by_volume=0.0002,
            ),
        ]
    )


@pytest.fixture()
def log(catalog) -> UsageLog:
    return UsageLog(catalog)


@pytest.fixture()
def jan_event(log):
    return log.record(date=date(2024, 1, 15), product_id="P-100", emission_unit_id="A", gallons=10)


@pytest.fixture()
def sqlite_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'voc_test.db'}"
