"""
SQLite record store for storesync.

This module provides the RecordStore class which persists every entity type
of the local business dataset in a single SQLite database.

Storage Structure:
    data/
        storesync.db                        # SQLite database
        preferences/                        # see storage.preferences
            {namespace}.json

Design Decisions:
    - Connection-per-operation, autocommit mode, transactions managed by hand
    - A restore runs inside one BEGIN IMMEDIATE transaction so readers see
      either the previous dataset or the new one
    - Nested SAVEPOINTs let a failing bulk insert fall back to item-by-item
      inserts without aborting the enclosing transaction
    - Only collection_items carries a foreign key (ON DELETE CASCADE), so
      clearing a collection clears its items and an item pointing at a
      missing collection is rejected
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from storesync.storage.models import (
    RECORD_TYPES,
    Collection,
    CollectionItem,
    CustomCategory,
    Product,
    Record,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


# Database schema version for migrations
SCHEMA_VERSION = 1


CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    sku TEXT NOT NULL,
    purchase_price REAL NOT NULL,
    sale_price REAL NOT NULL,
    stock_quantity INTEGER NOT NULL,
    minimum_stock INTEGER NOT NULL,
    custom_category_id TEXT NOT NULL,
    supplier TEXT NOT NULL,
    photo_url TEXT,
    thumbnail_url TEXT,
    image_backup_url TEXT,
    is_active INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS customers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    company_name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT NOT NULL,
    address TEXT NOT NULL,
    total_purchases REAL NOT NULL,
    last_purchase_date INTEGER,
    notes TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS sales (
    id TEXT PRIMARY KEY,
    customer_id TEXT NOT NULL,
    items TEXT NOT NULL,
    total REAL NOT NULL,
    date INTEGER NOT NULL,
    payment_method TEXT NOT NULL,
    note TEXT NOT NULL,
    status TEXT NOT NULL,
    canceled_at INTEGER,
    canceled_reason TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sales_customer ON sales(customer_id);

CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    amount REAL NOT NULL,
    category TEXT NOT NULL,
    date INTEGER NOT NULL,
    notes TEXT NOT NULL,
    supplier TEXT NOT NULL,
    receipt_number TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    associated_customer_ids TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    status TEXT NOT NULL,
    color TEXT NOT NULL,
    enable_chat INTEGER NOT NULL,
    web_template TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_collections_user ON collections(user_id);

CREATE TABLE IF NOT EXISTS collection_items (
    collection_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    notes TEXT,
    display_order INTEGER NOT NULL,
    is_featured INTEGER NOT NULL,
    special_price REAL,
    PRIMARY KEY (collection_id, product_id),
    FOREIGN KEY (collection_id) REFERENCES collections(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    number TEXT NOT NULL,
    sale_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    items TEXT NOT NULL,
    subtotal REAL NOT NULL,
    tax REAL NOT NULL,
    total REAL NOT NULL,
    date INTEGER NOT NULL,
    template TEXT NOT NULL,
    notes TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_movements (
    id TEXT PRIMARY KEY,
    product_id TEXT NOT NULL,
    movement_type TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    reason TEXT NOT NULL,
    description TEXT,
    reference_id TEXT,
    unit_cost REAL,
    previous_stock INTEGER NOT NULL,
    new_stock INTEGER NOT NULL,
    user_id TEXT,
    timestamp INTEGER NOT NULL,
    notes TEXT
);

CREATE INDEX IF NOT EXISTS idx_movements_product ON stock_movements(product_id);

CREATE TABLE IF NOT EXISTS custom_categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    icon TEXT NOT NULL,
    color TEXT NOT NULL,
    description TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    is_active INTEGER NOT NULL,
    sort_order INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_categories_user_name ON custom_categories(user_id, name);
"""

# Deterministic read order per table
_ORDER_BY = {
    CollectionItem.TABLE: "collection_id, display_order, product_id",
}


def _insert_sql(model: type[Record], verb: str = "INSERT") -> str:
    columns = model.columns()
    placeholders = ", ".join("?" for _ in columns)
    return f"{verb} INTO {model.TABLE} ({', '.join(columns)}) VALUES ({placeholders})"


class RestoreSession:
    """
    Write access to the record store inside one open transaction.

    Obtained from RecordStore.transaction(); never constructed directly.
    Every write raises StorageError on failure, leaving it to the caller to
    decide whether the enclosing transaction survives.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._savepoints = 0

    def clear(self, model: type[Record]) -> int:
        """Delete every row of a table. Returns the number of rows deleted."""
        try:
            cursor = self._conn.execute(f"DELETE FROM {model.TABLE}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear {model.TABLE}: {e}") from e
        return cursor.rowcount

    def clear_collections(self, user_id: str) -> int:
        """Delete the collections of one user together with their items."""
        try:
            cursor = self._conn.execute(
                "DELETE FROM collections WHERE user_id = ?", (user_id,)
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear collections: {e}") from e
        return cursor.rowcount

    def clear_categories(self, user_id: str) -> int:
        """Delete the custom categories of one user."""
        try:
            cursor = self._conn.execute(
                "DELETE FROM custom_categories WHERE user_id = ?", (user_id,)
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear custom categories: {e}") from e
        return cursor.rowcount

    def insert_many(self, records: Sequence[Record]) -> int:
        """
        Bulk insert records of one type.

        A row whose primary key already exists replaces the stored row, so
        the last record with a given id wins.

        Raises:
            StorageError: If any row is rejected. Rows already written by this
                call are not undone; wrap the call in savepoint() for that.
        """
        if not records:
            return 0
        model = type(records[0])
        try:
            self._conn.executemany(
                _insert_sql(model, "INSERT OR REPLACE"),
                [record.to_row() for record in records],
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to insert into {model.TABLE}: {e}") from e
        return len(records)

    def insert(self, record: Record) -> None:
        self.insert_many([record])

    @contextmanager
    def savepoint(self) -> Generator[None, None, None]:
        """
        Run a block inside a SAVEPOINT.

        On error the block's writes are rolled back and the exception is
        re-raised; the enclosing transaction stays usable.
        """
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        self._conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            self._conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self._conn.execute(f"RELEASE SAVEPOINT {name}")


class RecordStore:
    """
    Persistent storage for the local business dataset.

    Example:
        store = RecordStore(Path("./data/storesync.db"))

        store.save_records([Product(id="p1", name="Coffee")])
        products = store.list_records(Product)

        with store.transaction() as session:
            session.clear(Product)
            session.insert_many(products)

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path | str) -> None:
        """
        Initialize the record store.

        Args:
            db_path: Path to the SQLite database. Parent directories are
                created if needed.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized database schema version {SCHEMA_VERSION}")
            elif row[0] < SCHEMA_VERSION:
                logger.warning(
                    f"Database schema version {row[0]} is older than "
                    f"expected version {SCHEMA_VERSION}"
                )

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[RestoreSession, None, None]:
        """
        Open a write transaction.

        Commits when the block exits normally and rolls back on any
        exception. sqlite3 errors are re-raised as StorageError; anything
        else (e.g. cancellation) propagates unchanged after the rollback.
        """
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to begin transaction: {e}") from e

            try:
                yield RestoreSession(conn)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                logger.error(f"Transaction rolled back: {e}")
                raise StorageError(f"Transaction failed: {e}") from e
            except Exception as e:
                conn.execute("ROLLBACK")
                logger.error(f"Transaction rolled back: {e}")
                raise

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_records(self, model: type[R]) -> list[R]:
        """Return every record of one type in primary key order."""
        order_by = _ORDER_BY.get(model.TABLE, "id")
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT * FROM {model.TABLE} ORDER BY {order_by}")
            return [model.from_row(row) for row in cursor]

    def list_collections(self, user_id: str) -> list[Collection]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM collections WHERE user_id = ? ORDER BY id", (user_id,)
            )
            return [Collection.from_row(row) for row in cursor]

    def list_collection_items(self, user_id: str) -> list[CollectionItem]:
        """Return the items of every collection owned by user_id."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT ci.* FROM collection_items ci
                JOIN collections c ON c.id = ci.collection_id
                WHERE c.user_id = ?
                ORDER BY ci.collection_id, ci.display_order, ci.product_id
                """,
                (user_id,),
            )
            return [CollectionItem.from_row(row) for row in cursor]

    def list_categories(
        self, user_id: str, active_only: bool = False
    ) -> list[CustomCategory]:
        query = "SELECT * FROM custom_categories WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        with self._get_connection() as conn:
            cursor = conn.execute(query + " ORDER BY id", (user_id,))
            return [CustomCategory.from_row(row) for row in cursor]

    def get_product(self, product_id: str) -> Product | None:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,))
            row = cursor.fetchone()
            return Product.from_row(row) if row else None

    def count_records(self) -> dict[str, int]:
        """
        Get the number of rows per table.

        Returns:
            Dictionary mapping table name to row count.
        """
        with self._get_connection() as conn:
            counts = {}
            for model in RECORD_TYPES:
                cursor = conn.execute(f"SELECT COUNT(*) FROM {model.TABLE}")
                counts[model.TABLE] = cursor.fetchone()[0]
            return counts

    def get_statistics(self) -> dict[str, Any]:
        """
        Get storage statistics.

        Returns:
            Dictionary with per-table counts and the database size.
        """
        stats: dict[str, Any] = {"tables": self.count_records()}
        stats["database_size_bytes"] = self.db_path.stat().st_size
        return stats

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_records(self, records: Iterable[Record]) -> int:
        """
        Insert or replace records, all in one transaction.

        Returns:
            Number of records written.

        Raises:
            StorageError: If any record cannot be written.
        """
        records = list(records)
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                for record in records:
                    conn.execute(
                        _insert_sql(type(record), "INSERT OR REPLACE"), record.to_row()
                    )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                logger.error(f"Failed to save records: {e}")
                raise StorageError(f"Failed to save records: {e}") from e
        return len(records)

    def update_product_photo(self, product_id: str, photo_url: str) -> bool:
        """
        Point a product's photo at a new location.

        Returns:
            True if the product exists and was updated.
        """
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    "UPDATE products SET photo_url = ? WHERE id = ?",
                    (photo_url, product_id),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to update product {product_id}: {e}") from e
            return cursor.rowcount > 0

    def upsert_category(self, category: CustomCategory) -> bool:
        """
        Insert a custom category, or update the one with the same name.

        Categories are unique per (user_id, name). When a category with that
        name exists for the user it is updated in place and keeps its id.

        Returns:
            True if an existing category was updated, False if inserted.
        """
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                cursor = conn.execute(
                    "SELECT id FROM custom_categories WHERE user_id = ? AND name = ?",
                    (category.user_id, category.name),
                )
                row = cursor.fetchone()
                if row is not None:
                    conn.execute(
                        """
                        UPDATE custom_categories SET
                            icon = ?, color = ?, description = ?, created_at = ?,
                            updated_at = ?, is_active = ?, sort_order = ?
                        WHERE id = ?
                        """,
                        (
                            category.icon,
                            category.color,
                            category.description,
                            category.created_at,
                            category.updated_at,
                            1 if category.is_active else 0,
                            category.sort_order,
                            row["id"],
                        ),
                    )
                else:
                    conn.execute(_insert_sql(CustomCategory), category.to_row())
                conn.execute("COMMIT")
                return row is not None
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(
                    f"Failed to restore category {category.name}: {e}"
                ) from e
