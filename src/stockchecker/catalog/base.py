from __future__ import annotations

import re
from abc import ABC, abstractmethod

from stockchecker.cancel import CancelToken
from stockchecker.models import Product, Store, StoreAvailability

DEFAULT_RADIUS_MILES = 25

# Best Buy SKUs are 6-8 digits; such queries are tried as direct lookups first.
SKU_PATTERN = re.compile(r"^\d{6,8}$")


def looks_like_sku(query: str) -> bool:
    return bool(SKU_PATTERN.match(query.strip()))


class CatalogClient(ABC):
    name: str

    @abstractmethod
    def search_stores(
        self,
        postal_code: str,
        radius_miles: int = DEFAULT_RADIUS_MILES,
        cancel: CancelToken | None = None,
    ) -> list[Store]:
        raise NotImplementedError

    @abstractmethod
    def search_products(
        self,
        query: str,
        subclass: str | None = None,
        category_id: str | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Product]:
        raise NotImplementedError

    @abstractmethod
    def get_product(self, sku: str, cancel: CancelToken | None = None) -> Product:
        raise NotImplementedError

    @abstractmethod
    def check_availability(
        self,
        sku: str,
        store_ids: list[str],
        cancel: CancelToken | None = None,
    ) -> list[StoreAvailability]:
        """Availability of ``sku`` at ``store_ids``.

        Only stores with a positive signal are returned; a store missing from
        the result may be out of stock or simply unknown to the catalog.
        """
        raise NotImplementedError

    def close(self) -> None:
        return None
