from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Callable, Iterable, Sequence

from stockchecker.cancel import CancelToken
from stockchecker.catalog import CatalogClient, build_catalog
from stockchecker.catalog.base import DEFAULT_RADIUS_MILES
from stockchecker.config import load_config
from stockchecker.errors import CatalogError, Interrupted, TotalAggregationFailure
from stockchecker.models import (
    AppConfig,
    CheckReport,
    SkippedProduct,
    SortKey,
    StockResult,
    Store,
    StoreAvailability,
)

LOG = logging.getLogger(__name__)


def _product_name(result: StockResult) -> str:
    return result.product.name.casefold()


def _store_name(result: StockResult) -> str:
    return result.store.name.casefold()


def _price(result: StockResult) -> Decimal | None:
    return result.product.sale_price


def _distance(result: StockResult) -> float | None:
    return result.store.distance


_SECONDARY_KEYS: dict[SortKey, Callable[[StockResult], object]] = {
    SortKey.PRODUCT: _product_name,
    SortKey.STORE: _store_name,
    SortKey.PRICE: _price,
    SortKey.DISTANCE: _distance,
}


def sort_results(
    results: Iterable[StockResult],
    sort_by: SortKey | None = None,
    descending: bool = False,
) -> list[StockResult]:
    """In stock first, then low stock, then `sort_by` as the tie-breaker."""
    ordered = list(results)
    key = _SECONDARY_KEYS.get(sort_by) if sort_by is not None else None
    if key is not None:
        ordered.sort(key=lambda r: key(r) if key(r) is not None else 0, reverse=descending)
        ordered.sort(key=lambda r: key(r) is None)
    ordered.sort(key=lambda r: r.level.rank, reverse=True)
    return ordered


class StockCheckerService:
    def __init__(
        self,
        catalog: CatalogClient,
        max_workers: int = 1,
        deadline_seconds: float | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.catalog = catalog
        self.max_workers = max_workers
        self.deadline_seconds = deadline_seconds

    def close(self) -> None:
        self.catalog.close()

    def check_stock(
        self,
        skus: Sequence[str],
        store_ids: Sequence[str] | None = None,
        postal_code: str | None = None,
        radius_miles: int = DEFAULT_RADIUS_MILES,
        sort_by: SortKey | None = None,
        descending: bool = False,
        cancel: CancelToken | None = None,
        store_details: Sequence[Store] = (),
    ) -> CheckReport:
        """Check every product at every store; failing products are skipped."""
        wanted = list(dict.fromkeys(s.strip() for s in skus if s and s.strip()))
        if not wanted:
            return CheckReport()
        if store_ids is None and not postal_code:
            return CheckReport()
        if store_ids is not None:
            ids = list(dict.fromkeys(str(s).strip() for s in store_ids if str(s).strip()))
            if not ids:
                return CheckReport()

        token = (cancel or CancelToken()).child(self.deadline_seconds)
        known: dict[str, Store] = {store.store_id: store for store in store_details}
        if store_ids is None:
            nearby = self.catalog.search_stores(postal_code or "", radius_miles, cancel=token)
            for store in reversed(nearby):
                known[store.store_id] = store
            ids = list(dict.fromkeys(store.store_id for store in nearby))
            if not ids:
                LOG.info("no stores near zip=%s radius=%s", postal_code, radius_miles)
                return CheckReport()

        LOG.info("stock check products=%d stores=%d workers=%d", len(wanted), len(ids), self.max_workers)
        if self.max_workers > 1 and len(wanted) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(wanted))) as pool:
                futures = [pool.submit(self._check_product, sku, ids, known, token) for sku in wanted]
                outcomes = [future.result() for future in futures]
        else:
            outcomes = [self._check_product(sku, ids, known, token) for sku in wanted]

        results: list[StockResult] = []
        skipped: list[SkippedProduct] = []
        for outcome in outcomes:
            if isinstance(outcome, SkippedProduct):
                skipped.append(outcome)
            else:
                results.extend(outcome)

        if len(skipped) == len(wanted):
            failure = TotalAggregationFailure(skipped)
            LOG.error("%s", failure)
            raise failure

        report = CheckReport(results=sort_results(results, sort_by, descending), skipped=skipped)
        LOG.info(
            "stock check done results=%d skipped=%d",
            len(report.results),
            len(report.skipped),
        )
        return report

    def _check_product(
        self,
        sku: str,
        store_ids: list[str],
        known: dict[str, Store],
        token: CancelToken,
    ) -> list[StockResult] | SkippedProduct:
        try:
            product = self.catalog.get_product(sku, cancel=token)
            availability = self.catalog.check_availability(sku, store_ids, cancel=token)
        except Interrupted as exc:
            # Only the check's own cancel or deadline stops the whole check.
            if token.cancelled or (token.deadline is not None and token.remaining() == 0):
                raise
            LOG.warning("check timed out sku=%s error=%s", sku, exc)
            return SkippedProduct(sku=sku, error=str(exc), retryable=exc.retryable)
        except CatalogError as exc:
            LOG.warning("check failed sku=%s error=%s", sku, exc)
            return SkippedProduct(sku=sku, error=str(exc), retryable=exc.retryable)
        except Exception as exc:  # noqa: BLE001
            LOG.exception("check failed sku=%s error=%s", sku, exc)
            return SkippedProduct(sku=sku, error=str(exc), retryable=False)

        return [
            StockResult(
                store=self._store_for(entry, known.get(entry.store_id)),
                product=product,
                in_stock=entry.in_stock,
                low_stock=entry.low_stock,
                pickup_eligible=entry.pickup_eligible,
            )
            for entry in availability
        ]

    @staticmethod
    def _store_for(entry: StoreAvailability, known: Store | None) -> Store:
        if known is None:
            return Store(
                store_id=entry.store_id,
                name=entry.store_name,
                city=entry.city,
                state=entry.state,
                distance=entry.distance,
            )
        if known.distance is None and entry.distance is not None:
            return known.model_copy(update={"distance": entry.distance})
        return known


def build_service(config: AppConfig | None = None, config_path: str | None = None) -> StockCheckerService:
    if config is None:
        config = load_config(config_path)
    return StockCheckerService(
        catalog=build_catalog(config.catalog),
        max_workers=config.check.max_workers,
        deadline_seconds=config.check.deadline_seconds,
    )
