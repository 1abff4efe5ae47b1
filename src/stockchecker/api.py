from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stockchecker import __version__
from stockchecker.catalog import browse_products
from stockchecker.checker import StockCheckerService, build_service
from stockchecker.config import config_path_from_env, load_config
from stockchecker.errors import (
    CatalogError,
    DeadlineExceeded,
    NotFoundError,
    RateLimitExceededError,
    StockCheckerError,
    TotalAggregationFailure,
)
from stockchecker.models import AppConfig, SortKey
from stockchecker.state import SavedListStore

LOG = logging.getLogger(__name__)

app = FastAPI(title="Stock Checker", version=__version__)


class StoreRequest(BaseModel):
    store_id: str
    postal_code: str | None = None
    radius_miles: int | None = Field(default=None, gt=0)


class ProductRequest(BaseModel):
    sku: str


class CheckRequest(BaseModel):
    skus: list[str] | None = None
    store_ids: list[str] | None = None
    postal_code: str | None = None
    radius_miles: int | None = Field(default=None, gt=0)
    sort_by: SortKey | None = None
    descending: bool | None = None


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config(config_path_from_env())


@lru_cache(maxsize=1)
def get_service() -> StockCheckerService:
    return build_service(get_config())


def get_saved_lists() -> SavedListStore:
    return SavedListStore(get_config().state_db)


def _status_for(exc: StockCheckerError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, DeadlineExceeded):
        return 504
    if isinstance(exc, TotalAggregationFailure):
        return 503 if exc.retryable else 502
    if isinstance(exc, CatalogError):
        return 502
    return 500


@app.exception_handler(StockCheckerError)
async def stock_checker_error(request: Request, exc: StockCheckerError) -> JSONResponse:
    status = _status_for(exc)
    LOG.warning("request failed path=%s status=%d error=%s", request.url.path, status, exc)
    payload: dict[str, object] = {
        "detail": str(exc),
        "retryable": bool(getattr(exc, "retryable", False)),
    }
    if isinstance(exc, TotalAggregationFailure):
        payload["skipped"] = [s.model_dump() for s in exc.skipped]
    return JSONResponse(payload, status_code=status)


@app.get("/health")
def health(service: StockCheckerService = Depends(get_service)) -> dict[str, str]:
    return {"status": "ok", "catalog": service.catalog.name}


@app.get("/stores/search")
def search_stores(
    postal_code: str = "",
    radius_miles: int | None = None,
    service: StockCheckerService = Depends(get_service),
    config: AppConfig = Depends(get_config),
) -> JSONResponse:
    zip_value = postal_code.strip() or (config.location.zip or "")
    if not zip_value:
        raise HTTPException(status_code=400, detail="postal_code is required")
    stores = service.catalog.search_stores(zip_value, radius_miles or config.location.radius_miles)
    return JSONResponse({"stores": [s.model_dump(mode="json") for s in stores]})


@app.get("/products/search")
def search_products(
    q: str = "",
    subclass: str | None = None,
    category_id: str | None = None,
    service: StockCheckerService = Depends(get_service),
) -> JSONResponse:
    products = service.catalog.search_products(q, subclass=subclass, category_id=category_id)
    return JSONResponse({"products": [p.model_dump(mode="json") for p in products]})


@app.get("/products/browse")
def browse(service: StockCheckerService = Depends(get_service)) -> JSONResponse:
    products = browse_products(service.catalog)
    return JSONResponse({"products": [p.model_dump(mode="json") for p in products]})


@app.get("/products/{sku}")
def get_product(sku: str, service: StockCheckerService = Depends(get_service)) -> JSONResponse:
    return JSONResponse(service.catalog.get_product(sku).model_dump(mode="json"))


@app.get("/my/stores")
def my_stores(saved: SavedListStore = Depends(get_saved_lists)) -> JSONResponse:
    return JSONResponse({"stores": [s.model_dump(mode="json") for s in saved.list_stores()]})


@app.post("/my/stores")
def add_my_store(
    body: StoreRequest,
    saved: SavedListStore = Depends(get_saved_lists),
    service: StockCheckerService = Depends(get_service),
    config: AppConfig = Depends(get_config),
) -> JSONResponse:
    zip_value = (body.postal_code or config.location.zip or "").strip()
    if not zip_value:
        raise HTTPException(status_code=400, detail="postal_code is required to look up the store")
    found = service.catalog.search_stores(zip_value, body.radius_miles or config.location.radius_miles)
    store = next((s for s in found if s.store_id == body.store_id), None)
    if store is None:
        raise HTTPException(status_code=404, detail=f"store {body.store_id} not found near {zip_value}")
    saved.add_store(store)
    return JSONResponse(store.model_dump(mode="json"), status_code=201)


@app.delete("/my/stores/{store_id}")
def remove_my_store(store_id: str, saved: SavedListStore = Depends(get_saved_lists)) -> dict[str, bool]:
    if not saved.remove_store(store_id):
        raise HTTPException(status_code=404, detail=f"store {store_id} is not saved")
    return {"removed": True}


@app.get("/my/products")
def my_products(saved: SavedListStore = Depends(get_saved_lists)) -> JSONResponse:
    return JSONResponse({"products": [p.model_dump(mode="json") for p in saved.list_products()]})


@app.post("/my/products")
def add_my_product(
    body: ProductRequest,
    saved: SavedListStore = Depends(get_saved_lists),
    service: StockCheckerService = Depends(get_service),
) -> JSONResponse:
    product = service.catalog.get_product(body.sku.strip())
    saved.add_product(product)
    return JSONResponse(product.model_dump(mode="json"), status_code=201)


@app.delete("/my/products/{sku}")
def remove_my_product(sku: str, saved: SavedListStore = Depends(get_saved_lists)) -> dict[str, bool]:
    if not saved.remove_product(sku):
        raise HTTPException(status_code=404, detail=f"product {sku} is not saved")
    return {"removed": True}


@app.post("/check")
def check_stock(
    body: CheckRequest,
    saved: SavedListStore = Depends(get_saved_lists),
    service: StockCheckerService = Depends(get_service),
    config: AppConfig = Depends(get_config),
) -> JSONResponse:
    """Check saved (or given) products at saved (or given) stores.

    Stores without a record in ``results`` had no positive stock signal;
    the catalog does not say whether that means out of stock or unknown.
    """
    skus = body.skus if body.skus is not None else [p.sku for p in saved.list_products()]
    sort_by = body.sort_by or config.check.sort_by
    descending = config.check.descending if body.descending is None else body.descending

    if body.postal_code and body.store_ids is None:
        report = service.check_stock(
            skus,
            postal_code=body.postal_code.strip(),
            radius_miles=body.radius_miles or config.location.radius_miles,
            sort_by=sort_by,
            descending=descending,
        )
    else:
        saved_stores = saved.list_stores()
        store_ids = body.store_ids if body.store_ids is not None else [s.store_id for s in saved_stores]
        report = service.check_stock(
            skus,
            store_ids=store_ids,
            sort_by=sort_by,
            descending=descending,
            store_details=saved_stores,
        )

    results = []
    for r in report.results:
        row = r.model_dump(mode="json")
        row["status"] = r.level.value
        results.append(row)
    return JSONResponse(
        {
            "checked_at": report.checked_at.isoformat(),
            "count": len(results),
            "in_stock_count": sum(1 for r in report.results if r.in_stock),
            "results": results,
            "skipped": [s.model_dump() for s in report.skipped],
        }
    )
