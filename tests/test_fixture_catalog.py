from __future__ import annotations

import threading
import time

import pytest

from stockchecker.cancel import CancelToken
from stockchecker.catalog import FixtureCatalog, browse_products, build_catalog
from stockchecker.catalog.bestbuy import BestBuyCatalog
from stockchecker.catalog.fixture import (
    FIXTURE_PRODUCTS,
    FIXTURE_STORES,
    availability_roll,
    classify_roll,
)
from stockchecker.errors import Cancelled, NotFoundError
from stockchecker.models import CatalogConfig

ALL_STORE_IDS = [s.store_id for s in FIXTURE_STORES]


def test_availability_is_deterministic_per_pair() -> None:
    catalog = FixtureCatalog(latency_seconds=0)

    first = catalog.check_availability("6579543", ALL_STORE_IDS)
    second = catalog.check_availability("6579543", list(reversed(ALL_STORE_IDS)))

    assert {a.store_id: a for a in first} == {a.store_id: a for a in second}
    assert availability_roll("1118", "6579543") == availability_roll("1118", "6579543")
    assert availability_roll("1118", "6579543") != availability_roll("1009", "6579543")


def test_fresh_instances_agree() -> None:
    a = FixtureCatalog(latency_seconds=0).check_availability("6578901", ALL_STORE_IDS)
    b = FixtureCatalog(latency_seconds=0).check_availability("6578901", ALL_STORE_IDS)
    assert a == b


@pytest.mark.parametrize(
    ("roll", "carried", "expected"),
    [
        (0.05, False, (True, False)),
        (0.10, False, (False, False)),
        (0.49, True, (True, False)),
        (0.50, True, (True, True)),
        (0.69, True, (True, True)),
        (0.70, True, (False, False)),
    ],
)
def test_classify_roll(roll: float, carried: bool, expected: tuple[bool, bool]) -> None:
    assert classify_roll(roll, carried) == expected


def test_only_positive_signals_are_returned() -> None:
    catalog = FixtureCatalog(latency_seconds=0)
    for product in FIXTURE_PRODUCTS:
        for entry in catalog.check_availability(product.sku, ALL_STORE_IDS):
            assert entry.in_stock
            assert entry.pickup_eligible
            if not product.in_store_availability:
                assert not entry.low_stock


def test_unknown_stores_are_ignored() -> None:
    catalog = FixtureCatalog(latency_seconds=0)
    assert catalog.check_availability("6579543", ["does-not-exist"]) == []


def test_unknown_sku_is_not_found() -> None:
    catalog = FixtureCatalog(latency_seconds=0)
    with pytest.raises(NotFoundError):
        catalog.get_product("0000000")
    with pytest.raises(NotFoundError):
        catalog.check_availability("0000000", ALL_STORE_IDS)


def test_store_search_computes_distances_from_postal_code() -> None:
    catalog = FixtureCatalog(latency_seconds=0)

    stores = catalog.search_stores("94103", 25)

    assert stores[0].store_id == "1118"
    assert stores[0].distance == 0.0
    distances = [s.distance for s in stores]
    assert distances == sorted(distances)
    assert len(stores) == len(FIXTURE_STORES)


def test_store_search_honours_radius() -> None:
    catalog = FixtureCatalog(latency_seconds=0)
    nearby = catalog.search_stores("94103", 3)
    assert [s.store_id for s in nearby] == ["1118"]


def test_product_search() -> None:
    catalog = FixtureCatalog(latency_seconds=0)

    assert {p.sku for p in catalog.search_products("surging sparks")} == {"6578901", "6578902"}
    assert [p.sku for p in catalog.search_products("6512345")] == ["6512345"]
    assert len(catalog.search_products("pokemon tcg zzz")) == len(FIXTURE_PRODUCTS)
    assert catalog.search_products("television") == []
    assert catalog.search_products("", subclass="LAPTOPS") == []
    assert len(browse_products(catalog)) == len(FIXTURE_PRODUCTS)


def test_latency_is_cancellable() -> None:
    catalog = FixtureCatalog(latency_seconds=10)
    token = CancelToken()
    threading.Timer(0.05, token.cancel).start()

    started = time.monotonic()
    with pytest.raises(Cancelled):
        catalog.get_product("6579543", cancel=token)
    assert time.monotonic() - started < 2.0


def test_build_catalog_selects_variant_by_api_key() -> None:
    assert isinstance(build_catalog(CatalogConfig()), FixtureCatalog)
    assert isinstance(build_catalog(CatalogConfig(api_key="k")), BestBuyCatalog)
