from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stockchecker.cancel import CancelToken
from stockchecker.catalog.base import DEFAULT_RADIUS_MILES, CatalogClient, looks_like_sku
from stockchecker.errors import CatalogDecodeError, CatalogError, NotFoundError, UpstreamClientError
from stockchecker.models import Product, Store, StoreAvailability
from stockchecker.retrieval import RetrievalClient

LOG = logging.getLogger(__name__)

BASE_URL = "https://api.bestbuy.com/v1"

STORE_FIELDS = (
    "storeId,name,address,address2,city,region,postalCode,phone,distance,"
    "storeType,lat,lng"
)
PRODUCT_FIELDS = (
    "sku,name,salePrice,regularPrice,thumbnailImage,image,url,shortDescription,"
    "manufacturer,modelNumber,upc,inStoreAvailability,onlineAvailability"
)
AVAILABILITY_FIELDS = (
    "storeId,name,city,region,distance,products.sku,products.name,"
    "products.inStorePickup,products.friendsAndFamilyPickup"
)


class _StoreProduct(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sku: int | str | None = None
    in_store_pickup: bool = Field(default=False, alias="inStorePickup")


class _AvailabilityStore(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    store_id: int | str = Field(alias="storeId")
    name: str | None = None
    city: str | None = None
    region: str | None = None
    distance: float | None = None
    products: list[_StoreProduct] = Field(default_factory=list)


class BestBuyCatalog(CatalogClient):
    name = "bestbuy"

    def __init__(
        self,
        api_key: str | None = None,
        client: RetrievalClient | None = None,
        base_url: str = BASE_URL,
    ) -> None:
        self.api_key = api_key or os.getenv("BESTBUY_API_KEY")
        if not self.api_key:
            raise ValueError("BESTBUY_API_KEY is required for the Best Buy catalog")
        self.client = client or RetrievalClient()
        self.base_url = base_url.rstrip("/")

    def close(self) -> None:
        self.client.close()

    def search_stores(
        self,
        postal_code: str,
        radius_miles: int = DEFAULT_RADIUS_MILES,
        cancel: CancelToken | None = None,
    ) -> list[Store]:
        if radius_miles <= 0:
            radius_miles = DEFAULT_RADIUS_MILES

        endpoint = f"{self.base_url}/stores(area({quote(postal_code, safe='')},{int(radius_miles)}))"
        payload = self._get_json(
            endpoint,
            {"show": STORE_FIELDS, "pageSize": 50},
            cancel,
        )
        stores = self._validate_list(Store, payload.get("stores") or [])
        LOG.info("store search zip=%s radius=%s results=%d", postal_code, radius_miles, len(stores))
        return stores

    def search_products(
        self,
        query: str,
        subclass: str | None = None,
        category_id: str | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Product]:
        query = query.strip()
        if query and looks_like_sku(query):
            try:
                return [self.get_product(query, cancel=cancel)]
            except CatalogError as exc:
                LOG.debug("sku lookup failed query=%s error=%s, falling back to search", query, exc)

        filters: list[str] = []
        if query:
            filters.append(f"search={quote(query, safe='')}")
        if subclass:
            filters.append(f"subclass={quote(subclass, safe='')}")
        if category_id:
            filters.append(f"categoryPath.id={quote(category_id, safe='')}")
        # Many trading-card SKUs are flagged inactive; include them.
        filters.append("active=*")

        endpoint = f"{self.base_url}/products({'&'.join(filters)})"
        payload = self._get_json(
            endpoint,
            {"show": PRODUCT_FIELDS, "pageSize": 100 if (subclass or category_id) else 50},
            cancel,
        )
        products = self._validate_list(Product, payload.get("products") or [])
        LOG.info(
            "product search query=%r subclass=%s category=%s results=%d",
            query,
            subclass,
            category_id,
            len(products),
        )
        return products

    def get_product(self, sku: str, cancel: CancelToken | None = None) -> Product:
        endpoint = f"{self.base_url}/products/{quote(sku, safe='')}.json"
        try:
            payload = self._get_json(endpoint, {}, cancel)
        except UpstreamClientError as exc:
            if exc.status == 404:
                raise NotFoundError(sku) from exc
            raise

        if not payload.get("sku"):
            raise NotFoundError(sku)
        try:
            return Product.model_validate(payload)
        except ValidationError as exc:
            raise CatalogDecodeError(f"invalid product payload for sku {sku}: {exc}") from exc

    def check_availability(
        self,
        sku: str,
        store_ids: list[str],
        cancel: CancelToken | None = None,
    ) -> list[StoreAvailability]:
        if not store_ids:
            return []

        id_list = ",".join(quote(str(store_id), safe="") for store_id in store_ids)
        endpoint = (
            f"{self.base_url}/stores(storeId%20in({id_list}))"
            f"+products(sku={quote(sku, safe='')})"
        )
        try:
            payload = self._get_json(
                endpoint,
                {"show": AVAILABILITY_FIELDS, "pageSize": 100},
                cancel,
            )
        except UpstreamClientError as exc:
            if exc.status == 403:
                LOG.warning("availability restricted by catalog sku=%s", sku)
                return []
            raise

        entries = self._validate_list(_AvailabilityStore, payload.get("stores") or [])
        # The combined query only returns stores that stock the product.
        availability = [
            StoreAvailability(
                store_id=str(entry.store_id),
                store_name=entry.name or "",
                city=entry.city or "",
                state=entry.region or "",
                distance=entry.distance,
                in_stock=True,
                low_stock=False,
                pickup_eligible=bool(entry.products) and entry.products[0].in_store_pickup,
            )
            for entry in entries
        ]
        LOG.info("availability sku=%s stores=%d in_stock=%d", sku, len(store_ids), len(availability))
        return availability

    def _get_json(
        self,
        endpoint: str,
        params: dict[str, Any],
        cancel: CancelToken | None,
    ) -> dict[str, Any]:
        query = {"format": "json", **params, "apiKey": self.api_key}
        body = self.client.fetch(endpoint, params=query, cancel=cancel)
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise CatalogDecodeError(f"invalid JSON from {endpoint.split('?')[0]}") from exc
        if not isinstance(payload, dict):
            raise CatalogDecodeError(f"unexpected payload type {type(payload).__name__}")
        return payload

    def _validate_list(self, model: type[BaseModel], entries: list[Any]) -> list[Any]:
        try:
            return [model.model_validate(entry) for entry in entries]
        except ValidationError as exc:
            raise CatalogDecodeError(f"invalid {model.__name__} entry: {exc}") from exc
