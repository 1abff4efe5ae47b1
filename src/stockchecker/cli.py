from __future__ import annotations

import argparse
import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from stockchecker.catalog import browse_products
from stockchecker.checker import StockCheckerService, build_service
from stockchecker.config import CONFIG_PATH_ENV, load_config
from stockchecker.errors import StockCheckerError
from stockchecker.models import AppConfig, CheckReport, Product, SortKey, StockLevel, Store
from stockchecker.state import SavedListStore

LOG = logging.getLogger(__name__)

STATUS_STYLES = {
    StockLevel.IN_STOCK: ("In stock", "green"),
    StockLevel.LOW_STOCK: ("Low stock", "yellow"),
    StockLevel.NOT_AVAILABLE: ("Not available", "red"),
}


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stockchecker")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--config", help="YAML config file")

    sub = parser.add_subparsers(dest="command", required=True)

    stores = sub.add_parser("stores").add_subparsers(dest="action", required=True)
    p = stores.add_parser("search")
    p.add_argument("--zip", dest="postal_code")
    p.add_argument("--radius", type=int)
    stores.add_parser("list")
    p = stores.add_parser("add", help="save stores found near --zip")
    p.add_argument("store_ids", nargs="+")
    p.add_argument("--zip", dest="postal_code")
    p.add_argument("--radius", type=int)
    p = stores.add_parser("remove")
    p.add_argument("store_id")

    products = sub.add_parser("products").add_subparsers(dest="action", required=True)
    p = products.add_parser("search")
    p.add_argument("query")
    p.add_argument("--subclass")
    products.add_parser("browse")
    products.add_parser("list")
    p = products.add_parser("add")
    p.add_argument("skus", nargs="+")
    p = products.add_parser("remove")
    p.add_argument("sku")

    check = sub.add_parser("check")
    check.add_argument("--sku", action="append", dest="skus", help="defaults to saved products")
    check.add_argument("--store", action="append", dest="store_ids", help="defaults to saved stores")
    check.add_argument("--zip", dest="postal_code", help="check every store near this ZIP instead")
    check.add_argument("--radius", type=int)
    check.add_argument("--sort", choices=[k.value for k in SortKey])
    check.add_argument("--desc", action="store_true", default=None)

    web = sub.add_parser("web")
    web.add_argument("--host", default="127.0.0.1")
    web.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "web":
        import uvicorn

        if args.config:
            os.environ[CONFIG_PATH_ENV] = args.config
        uvicorn.run("stockchecker.api:app", host=args.host, port=args.port, reload=False)
        return 0

    console = Console()
    config = load_config(args.config)
    service = build_service(config)
    saved = SavedListStore(config.state_db)
    try:
        if args.command == "stores":
            return _stores_command(args, config, service, saved, console)
        if args.command == "products":
            return _products_command(args, service, saved, console)
        if args.command == "check":
            return _check_command(args, config, service, saved, console)
    except StockCheckerError as exc:
        LOG.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        service.close()

    raise RuntimeError(f"unsupported command: {args.command}")


def _postal_code(args: argparse.Namespace, config: AppConfig) -> str:
    postal_code = args.postal_code or config.location.zip
    if not postal_code:
        raise SystemExit("a ZIP code is required (--zip or location.zip in the config)")
    return postal_code


def _stores_command(
    args: argparse.Namespace,
    config: AppConfig,
    service: StockCheckerService,
    saved: SavedListStore,
    console: Console,
) -> int:
    if args.action == "list":
        console.print(_stores_table(saved.list_stores()))
        return 0
    if args.action == "remove":
        if not saved.remove_store(args.store_id):
            console.print(f"store {args.store_id} is not saved")
            return 1
        return 0

    radius = args.radius or config.location.radius_miles
    found = service.catalog.search_stores(_postal_code(args, config), radius)
    if args.action == "search":
        console.print(_stores_table(found))
        return 0

    by_id = {store.store_id: store for store in found}
    missing = [store_id for store_id in args.store_ids if store_id not in by_id]
    for store_id in args.store_ids:
        if store_id in by_id:
            saved.add_store(by_id[store_id])
    if missing:
        console.print(f"not found near that ZIP: {', '.join(missing)}")
        return 1
    return 0


def _products_command(
    args: argparse.Namespace,
    service: StockCheckerService,
    saved: SavedListStore,
    console: Console,
) -> int:
    catalog = service.catalog
    if args.action == "search":
        console.print(_products_table(catalog.search_products(args.query, subclass=args.subclass)))
        return 0
    if args.action == "browse":
        console.print(_products_table(browse_products(catalog)))
        return 0
    if args.action == "list":
        console.print(_products_table(saved.list_products()))
        return 0
    if args.action == "remove":
        if not saved.remove_product(args.sku):
            console.print(f"product {args.sku} is not saved")
            return 1
        return 0

    for sku in args.skus:
        saved.add_product(catalog.get_product(sku))
    return 0


def _check_command(
    args: argparse.Namespace,
    config: AppConfig,
    service: StockCheckerService,
    saved: SavedListStore,
    console: Console,
) -> int:
    skus = args.skus or [p.sku for p in saved.list_products()]
    saved_stores = saved.list_stores()
    sort_by = SortKey(args.sort) if args.sort else config.check.sort_by
    descending = config.check.descending if args.desc is None else args.desc

    if args.postal_code:
        report = service.check_stock(
            skus,
            postal_code=args.postal_code,
            radius_miles=args.radius or config.location.radius_miles,
            sort_by=sort_by,
            descending=descending,
        )
    else:
        store_ids = args.store_ids or [s.store_id for s in saved_stores]
        report = service.check_stock(
            skus,
            store_ids=store_ids,
            sort_by=sort_by,
            descending=descending,
            store_details=saved_stores,
        )

    _print_report(report, console)
    return 0


def _stores_table(stores: list[Store]) -> Table:
    table = Table(title="Stores")
    for column in ("ID", "Name", "Address", "City", "Distance (mi)"):
        table.add_column(column)
    for store in stores:
        distance = f"{store.distance:.1f}" if store.distance is not None else ""
        table.add_row(store.store_id, store.name, store.address, f"{store.city}, {store.state}", distance)
    return table


def _products_table(products: list[Product]) -> Table:
    table = Table(title="Products")
    for column in ("SKU", "Name", "Price"):
        table.add_column(column)
    for product in products:
        price = f"${product.sale_price}" if product.sale_price is not None else ""
        table.add_row(product.sku, product.name, price)
    return table


def _print_report(report: CheckReport, console: Console) -> None:
    if not report.results:
        console.print("No stock found at the checked stores.")
    else:
        table = Table(title=f"Stock check {report.checked_at:%Y-%m-%d %H:%M} UTC")
        for column in ("Status", "Product", "Price", "Store", "Pickup"):
            table.add_column(column)
        for result in report.results:
            label, style = STATUS_STYLES[result.level]
            price = f"${result.product.sale_price}" if result.product.sale_price is not None else ""
            table.add_row(
                f"[{style}]{label}[/{style}]",
                result.product.name,
                price,
                result.store.name or result.store.store_id,
                "yes" if result.pickup_eligible else "no",
            )
        console.print(table)

    for skipped in report.skipped:
        hint = " (try again later)" if skipped.retryable else ""
        console.print(f"[yellow]skipped {skipped.sku}: {skipped.error}{hint}[/yellow]")


if __name__ == "__main__":
    sys.exit(main())
