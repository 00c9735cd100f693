from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from voc_tracker.engine.models import Product


class ProductCatalog:
    """In-memory product reference data keyed by product id."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        for p in products:
            self._products[p.id] = p

    def list(self) -> List[Product]:
        return list(self._products.values())

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(str(product_id or "").strip())

    def find_by_remote_id(self, item_id: object) -> Optional[Product]:
        key = str(item_id or "").strip()
        if not key:
            return None
        for p in self._products.values():
            if p.remote_item_id is not None and str(p.remote_item_id) == key:
                return p
        return None

    def upsert(self, product: Product) -> Product:
        # Existing usage events keep the masses computed at entry time.
        self._products[product.id] = product
        return product

    def __contains__(self, product_id: object) -> bool:
        return str(product_id or "").strip() in self._products

    def __len__(self) -> int:
        return len(self._products)
