from __future__ import annotations

import hashlib
import logging
import random
from decimal import Decimal

from stockchecker.cancel import CancelToken
from stockchecker.catalog.base import DEFAULT_RADIUS_MILES, CatalogClient
from stockchecker.errors import NotFoundError
from stockchecker.geo import centroid, haversine_miles
from stockchecker.models import Product, Store, StoreAvailability

LOG = logging.getLogger(__name__)

FIXTURE_SUBCLASS = "POKEMON CARDS"
FIXTURE_CATEGORY_ID = "pcmcat1604992984556"

# Chance that an item shows up at a given store.
RARE_ITEM_AVAILABLE = 0.10
COMMON_ITEM_AVAILABLE = 0.70
# Rolls in [COMMON_ITEM_LOW_STOCK, COMMON_ITEM_AVAILABLE) are reported as low stock.
COMMON_ITEM_LOW_STOCK = 0.50


def _store(store_id: str, name: str, address: str, city: str, postal_code: str, phone: str, lat: float, lon: float) -> Store:
    return Store(
        store_id=store_id,
        name=name,
        address=address,
        city=city,
        state="CA",
        postal_code=postal_code,
        phone=phone,
        store_type="Big Box",
        lat=lat,
        lon=lon,
    )


def _product(
    sku: str,
    name: str,
    price: str,
    slug: str,
    description: str,
    in_store: bool,
    online: bool,
) -> Product:
    return Product(
        sku=sku,
        name=f"Pokemon Trading Card Game: {name}",
        sale_price=Decimal(price),
        regular_price=Decimal(price),
        thumbnail_url=(
            f"https://pisces.bbystatic.com/image2/BestBuy_US/images/products/{sku[:4]}/{sku}_sd.jpg"
        ),
        product_url=f"https://www.bestbuy.com/site/pokemon-trading-card-game-{slug}/{sku}.p",
        short_description=description,
        manufacturer="Pokemon",
        in_store_availability=in_store,
        online_availability=online,
    )


FIXTURE_STORES: tuple[Store, ...] = (
    _store("1118", "Best Buy - San Francisco", "1717 Harrison St", "San Francisco", "94103", "(415) 626-9682", 37.7699, -122.4134),
    _store("1009", "Best Buy - Daly City", "133 Serramonte Center", "Daly City", "94015", "(650) 991-9289", 37.6710, -122.4687),
    _store("187", "Best Buy - Emeryville", "3700 Mandela Pkwy", "Emeryville", "94608", "(510) 596-1531", 37.8358, -122.2914),
    _store("1444", "Best Buy - San Bruno", "899 El Camino Real", "San Bruno", "94066", "(650) 873-3688", 37.6252, -122.4117),
    _store("573", "Best Buy - Colma", "4821 Colma Blvd", "Colma", "94014", "(650) 757-0381", 37.6769, -122.4583),
    _store("499", "Best Buy - Oakland", "2110 Broadway", "Oakland", "94612", "(510) 625-0565", 37.8124, -122.2685),
)

FIXTURE_PRODUCTS: tuple[Product, ...] = (
    _product(
        "6579543",
        "Scarlet & Violet Prismatic Evolutions Elite Trainer Box",
        "59.99",
        "scarlet-violet-prismatic-evolutions-elite-trainer-box",
        "Get ready for battle with the Prismatic Evolutions Elite Trainer Box!",
        in_store=True,
        online=False,
    ),
    _product(
        "6579544",
        "Scarlet & Violet Prismatic Evolutions Booster Bundle",
        "29.99",
        "scarlet-violet-prismatic-evolutions-booster-bundle",
        "Collect amazing cards with the Prismatic Evolutions Booster Bundle!",
        in_store=True,
        online=False,
    ),
    _product(
        "6579545",
        "Scarlet & Violet Prismatic Evolutions Booster Pack",
        "4.99",
        "scarlet-violet-prismatic-evolutions-booster-pack",
        "Each booster pack contains 10 cards from the Prismatic Evolutions expansion!",
        in_store=True,
        online=True,
    ),
    _product(
        "6543210",
        "Scarlet & Violet 151 Ultra Premium Collection",
        "139.99",
        "scarlet-violet-151-ultra-premium-collection",
        "The ultimate Pokemon 151 collection featuring exclusive cards!",
        in_store=False,
        online=False,
    ),
    _product(
        "6543211",
        "Scarlet & Violet 151 Elite Trainer Box",
        "49.99",
        "scarlet-violet-151-elite-trainer-box",
        "Collect the original 151 Pokemon with this Elite Trainer Box!",
        in_store=True,
        online=False,
    ),
    _product(
        "6578901",
        "Surging Sparks Elite Trainer Box",
        "54.99",
        "surging-sparks-elite-trainer-box",
        "Power up with the Surging Sparks Elite Trainer Box!",
        in_store=True,
        online=True,
    ),
    _product(
        "6578902",
        "Surging Sparks Booster Bundle",
        "24.99",
        "surging-sparks-booster-bundle",
        "Get 6 booster packs in this Surging Sparks bundle!",
        in_store=True,
        online=True,
    ),
    _product(
        "6512345",
        "Paldean Fates Elite Trainer Box",
        "59.99",
        "paldean-fates-elite-trainer-box",
        "Discover shiny Pokemon with the Paldean Fates Elite Trainer Box!",
        in_store=True,
        online=False,
    ),
)


def availability_roll(store_id: str, sku: str) -> float:
    """Deterministic number in [0, 1) for a (store, product) pair."""
    digest = hashlib.sha256(f"{store_id}:{sku}".encode("utf-8")).digest()
    return random.Random(int.from_bytes(digest[:8], "big")).random()


def classify_roll(roll: float, carried_in_stores: bool) -> tuple[bool, bool]:
    """Map a roll to (in_stock, low_stock)."""
    if not carried_in_stores:
        return roll < RARE_ITEM_AVAILABLE, False
    in_stock = roll < COMMON_ITEM_AVAILABLE
    low_stock = COMMON_ITEM_LOW_STOCK <= roll < COMMON_ITEM_AVAILABLE
    return in_stock, low_stock


class FixtureCatalog(CatalogClient):
    """Offline catalog backed by a fixed set of Bay Area stores and products."""

    name = "fixture"

    def __init__(
        self,
        latency_seconds: float = 0.1,
        stores: tuple[Store, ...] = FIXTURE_STORES,
        products: tuple[Product, ...] = FIXTURE_PRODUCTS,
    ) -> None:
        self.latency_seconds = latency_seconds
        self.stores = stores
        self.products = products
        self._stores_by_id = {s.store_id: s for s in stores}
        self._products_by_sku = {p.sku: p for p in products}

    def _simulate_latency(self, cancel: CancelToken | None) -> None:
        token = cancel or CancelToken()
        token.sleep(self.latency_seconds)

    def _anchor(self, postal_code: str) -> tuple[float, float]:
        for store in self.stores:
            if store.postal_code == postal_code.strip() and store.lat is not None and store.lon is not None:
                return store.lat, store.lon
        return centroid([(s.lat, s.lon) for s in self.stores if s.lat is not None and s.lon is not None])

    def search_stores(
        self,
        postal_code: str,
        radius_miles: int = DEFAULT_RADIUS_MILES,
        cancel: CancelToken | None = None,
    ) -> list[Store]:
        self._simulate_latency(cancel)
        if radius_miles <= 0:
            radius_miles = DEFAULT_RADIUS_MILES

        lat, lon = self._anchor(postal_code)
        found: list[Store] = []
        for store in self.stores:
            distance = round(haversine_miles(lat, lon, store.lat, store.lon), 2)
            if distance <= radius_miles:
                found.append(store.model_copy(update={"distance": distance}))
        found.sort(key=lambda s: (s.distance, s.store_id))
        return found

    def search_products(
        self,
        query: str,
        subclass: str | None = None,
        category_id: str | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Product]:
        self._simulate_latency(cancel)
        if subclass and subclass.strip().upper() != FIXTURE_SUBCLASS:
            return []
        if category_id and category_id != FIXTURE_CATEGORY_ID:
            return []

        needle = query.strip().lower()
        if not needle:
            return list(self.products)

        matches = [
            p
            for p in self.products
            if needle in p.name.lower() or needle in p.sku or needle in p.short_description.lower()
        ]
        if not matches and ("pokemon" in needle or "card" in needle):
            return list(self.products)
        return matches

    def get_product(self, sku: str, cancel: CancelToken | None = None) -> Product:
        self._simulate_latency(cancel)
        product = self._products_by_sku.get(sku.strip())
        if product is None:
            raise NotFoundError(sku)
        return product

    def check_availability(
        self,
        sku: str,
        store_ids: list[str],
        cancel: CancelToken | None = None,
    ) -> list[StoreAvailability]:
        self._simulate_latency(cancel)
        product = self._products_by_sku.get(sku.strip())
        if product is None:
            raise NotFoundError(sku)

        availability: list[StoreAvailability] = []
        for store_id in dict.fromkeys(str(s) for s in store_ids):
            store = self._stores_by_id.get(store_id)
            if store is None:
                continue
            in_stock, low_stock = classify_roll(
                availability_roll(store_id, product.sku), product.in_store_availability
            )
            # Mirrors the live catalog, which never lists stores without stock.
            if not in_stock:
                continue
            availability.append(
                StoreAvailability(
                    store_id=store_id,
                    store_name=store.name,
                    city=store.city,
                    state=store.state,
                    in_stock=in_stock,
                    low_stock=low_stock,
                    pickup_eligible=in_stock,
                )
            )
        LOG.debug("fixture availability sku=%s in_stock=%d", sku, len(availability))
        return availability
