from __future__ import annotations

import logging

from stockchecker.cancel import CancelToken
from stockchecker.catalog.base import CatalogClient
from stockchecker.catalog.bestbuy import BestBuyCatalog
from stockchecker.catalog.fixture import FIXTURE_SUBCLASS, FixtureCatalog
from stockchecker.models import CatalogConfig, Product
from stockchecker.retrieval import RetrievalClient

LOG = logging.getLogger(__name__)

BROWSE_SUBCLASS = FIXTURE_SUBCLASS

__all__ = [
    "BROWSE_SUBCLASS",
    "BestBuyCatalog",
    "CatalogClient",
    "FixtureCatalog",
    "browse_products",
    "build_catalog",
]


def build_catalog(config: CatalogConfig) -> CatalogClient:
    if config.use_fixture:
        LOG.info("no Best Buy API key configured, using fixture catalog")
        return FixtureCatalog(latency_seconds=config.fixture_latency_seconds)

    client = RetrievalClient(
        min_interval=config.min_interval_seconds,
        max_retries=config.max_retries,
        retry_base_wait=config.retry_base_wait_seconds,
        request_timeout=config.request_timeout_seconds,
        call_deadline=config.call_deadline_seconds,
    )
    return BestBuyCatalog(api_key=config.api_key, client=client, base_url=config.base_url)


def browse_products(catalog: CatalogClient, cancel: CancelToken | None = None) -> list[Product]:
    """Trading-card products, including items the catalog marks inactive."""
    return catalog.search_products("", subclass=BROWSE_SUBCLASS, cancel=cancel)
