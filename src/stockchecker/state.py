from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from stockchecker.models import Product, Store


class SavedListStore:
    """The user's saved stores and products, kept in SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS saved_stores (
                    store_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    address TEXT NOT NULL DEFAULT '',
                    city TEXT NOT NULL DEFAULT '',
                    state TEXT NOT NULL DEFAULT '',
                    postal_code TEXT NOT NULL DEFAULT '',
                    phone TEXT NOT NULL DEFAULT '',
                    added_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS saved_products (
                    sku TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    sale_price TEXT,
                    thumbnail_url TEXT NOT NULL DEFAULT '',
                    product_url TEXT NOT NULL DEFAULT '',
                    added_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def add_store(self, store: Store) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO saved_stores (store_id, name, address, city, state, postal_code, phone, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(store_id)
                DO UPDATE SET name = excluded.name, address = excluded.address, city = excluded.city,
                    state = excluded.state, postal_code = excluded.postal_code, phone = excluded.phone
                """,
                (
                    store.store_id,
                    store.name,
                    store.address,
                    store.city,
                    store.state,
                    store.postal_code,
                    store.phone,
                    now,
                ),
            )
            conn.commit()

    def remove_store(self, store_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM saved_stores WHERE store_id = ?", (store_id,))
            conn.commit()
        return cursor.rowcount > 0

    def list_stores(self) -> list[Store]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT store_id, name, address, city, state, postal_code, phone
                FROM saved_stores
                ORDER BY added_at, store_id
                """
            ).fetchall()

        return [Store(**dict(row)) for row in rows]

    def add_product(self, product: Product) -> None:
        now = datetime.now(timezone.utc).isoformat()
        price = str(product.sale_price) if product.sale_price is not None else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO saved_products (sku, name, sale_price, thumbnail_url, product_url, added_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(sku)
                DO UPDATE SET name = excluded.name, sale_price = excluded.sale_price,
                    thumbnail_url = excluded.thumbnail_url, product_url = excluded.product_url
                """,
                (product.sku, product.name, price, product.thumbnail_url, product.product_url, now),
            )
            conn.commit()

    def remove_product(self, sku: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM saved_products WHERE sku = ?", (sku,))
            conn.commit()
        return cursor.rowcount > 0

    def list_products(self) -> list[Product]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT sku, name, sale_price, thumbnail_url, product_url
                FROM saved_products
                ORDER BY added_at, sku
                """
            ).fetchall()

        return [Product(**dict(row)) for row in rows]
