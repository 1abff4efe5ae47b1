from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StockLevel(str, Enum):
    NOT_AVAILABLE = "not_available"
    LOW_STOCK = "low_stock"
    IN_STOCK = "in_stock"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def from_flags(cls, in_stock: bool, low_stock: bool) -> "StockLevel":
        if not in_stock:
            return cls.NOT_AVAILABLE
        return cls.LOW_STOCK if low_stock else cls.IN_STOCK


_LEVEL_RANK = {
    StockLevel.NOT_AVAILABLE: 0,
    StockLevel.LOW_STOCK: 1,
    StockLevel.IN_STOCK: 2,
}


class SortKey(str, Enum):
    STATUS = "status"
    PRODUCT = "product"
    STORE = "store"
    PRICE = "price"
    DISTANCE = "distance"


class CatalogRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class Store(CatalogRecord):
    store_id: str = Field(alias="storeId")
    name: str = ""
    address: str = ""
    address2: str = ""
    city: str = ""
    state: str = Field(default="", alias="region")
    postal_code: str = Field(default="", alias="postalCode")
    phone: str = ""
    store_type: str = Field(default="", alias="storeType")
    lat: float | None = None
    lon: float | None = Field(default=None, alias="lng")
    # Only set on search results; relative to the query point.
    distance: float | None = None

    @field_validator("store_id", mode="before")
    @classmethod
    def _id_to_str(cls, value: object) -> str:
        return str(value)

    @field_validator("name", "address", "address2", "city", "state", "postal_code", "phone", "store_type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value


class Product(CatalogRecord):
    sku: str
    name: str = ""
    sale_price: Decimal | None = Field(default=None, alias="salePrice")
    regular_price: Decimal | None = Field(default=None, alias="regularPrice")
    thumbnail_url: str = Field(default="", alias="thumbnailImage")
    image_url: str = Field(default="", alias="image")
    product_url: str = Field(default="", alias="url")
    short_description: str = Field(default="", alias="shortDescription")
    manufacturer: str = ""
    model_number: str = Field(default="", alias="modelNumber")
    upc: str = ""
    in_store_availability: bool = Field(default=False, alias="inStoreAvailability")
    online_availability: bool = Field(default=False, alias="onlineAvailability")

    @field_validator("sku", mode="before")
    @classmethod
    def _sku_to_str(cls, value: object) -> str:
        return str(value)

    @field_validator(
        "name",
        "thumbnail_url",
        "image_url",
        "product_url",
        "short_description",
        "manufacturer",
        "model_number",
        "upc",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("sale_price", "regular_price", mode="before")
    @classmethod
    def _price_from_float(cls, value: object) -> object:
        # str() keeps 59.99 from turning into 59.9899999...
        if isinstance(value, float):
            return str(value)
        return value


class StockFlags(CatalogRecord):
    in_stock: bool
    low_stock: bool = False
    pickup_eligible: bool = False

    @model_validator(mode="after")
    def _low_implies_available(self) -> "StockFlags":
        if self.low_stock and not self.in_stock:
            raise ValueError("low_stock requires in_stock")
        return self

    @property
    def level(self) -> StockLevel:
        return StockLevel.from_flags(self.in_stock, self.low_stock)


class StoreAvailability(StockFlags):
    store_id: str
    store_name: str = ""
    city: str = ""
    state: str = ""
    distance: float | None = None

    @field_validator("store_id", mode="before")
    @classmethod
    def _id_to_str(cls, value: object) -> str:
        return str(value)


class StockResult(StockFlags):
    store: Store
    product: Product


class SkippedProduct(BaseModel):
    sku: str
    error: str
    retryable: bool = False


class CheckReport(BaseModel):
    """Outcome of one stock check.

    ``results`` only holds pairs the catalog reported a positive signal for.
    A (store, product) pair that is missing means "no signal", which the
    catalog does not distinguish from "confirmed out of stock".
    """

    results: list[StockResult] = Field(default_factory=list)
    skipped: list[SkippedProduct] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def partial(self) -> bool:
        return bool(self.skipped)


class CatalogConfig(BaseModel):
    api_key: str | None = None
    base_url: str = "https://api.bestbuy.com/v1"
    # ~3 requests per second keeps clear of the vendor's per-second limit.
    min_interval_seconds: float = Field(default=0.35, ge=0)
    max_retries: int = Field(default=5, ge=0)
    retry_base_wait_seconds: float = Field(default=1.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    call_deadline_seconds: float | None = Field(default=None, gt=0)
    fixture_latency_seconds: float = Field(default=0.1, ge=0)

    @property
    def use_fixture(self) -> bool:
        return not self.api_key


class LocationConfig(BaseModel):
    zip: str | None = None
    radius_miles: int = Field(default=25, gt=0)


class CheckConfig(BaseModel):
    max_workers: int = Field(default=1, ge=1)
    deadline_seconds: float | None = Field(default=None, gt=0)
    sort_by: SortKey = SortKey.STATUS
    descending: bool = False


class AppConfig(BaseModel):
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    check: CheckConfig = Field(default_factory=CheckConfig)
    state_db: str = "stockchecker.sqlite3"
