"""Local cache of the last downloaded shopping list snapshots using SQLite"""

import dataclasses
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Type

from .models import (
    NOT_PENDING,
    EntityType,
    MissingItem,
    Product,
    ProductGroup,
    QuantityUnit,
    ShoppingList,
    ShoppingListItem,
    Snapshot,
)

logger = logging.getLogger(__name__)

# entity type -> (table, record class)
TABLES: Dict[EntityType, Tuple[str, Type]] = {
    EntityType.SHOPPING_LIST_ITEMS: ("shopping_list_items", ShoppingListItem),
    EntityType.SHOPPING_LISTS: ("shopping_lists", ShoppingList),
    EntityType.PRODUCT_GROUPS: ("product_groups", ProductGroup),
    EntityType.QUANTITY_UNITS: ("quantity_units", QuantityUnit),
    EntityType.PRODUCTS: ("products", Product),
    EntityType.MISSING_ITEMS: ("missing_items", MissingItem),
}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS shopping_list_items (
    id INTEGER PRIMARY KEY,
    shopping_list_id INTEGER NOT NULL,
    product_id INTEGER,
    note TEXT,
    amount REAL DEFAULT 1,
    qu_id INTEGER,
    done INTEGER DEFAULT 0,         -- 0=undone, 1=done
    done_synced INTEGER DEFAULT -1  -- -1=no pending local change
);

CREATE TABLE IF NOT EXISTS shopping_lists (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT
);

CREATE TABLE IF NOT EXISTS product_groups (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT
);

CREATE TABLE IF NOT EXISTS quantity_units (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    name_plural TEXT
);

CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    product_group_id INTEGER,
    qu_id_purchase INTEGER
);

CREATE TABLE IF NOT EXISTS missing_items (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    amount_missing REAL DEFAULT 0,
    is_partly_in_stock INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_items_list ON shopping_list_items(shopping_list_id);
CREATE INDEX IF NOT EXISTS idx_items_pending ON shopping_list_items(done_synced);
"""

SyncDiff = Tuple[List[ShoppingListItem], Dict[int, ShoppingListItem]]


class ShoppingListRepository:
    """Persists snapshots and diffs pending local mutations against server truth"""

    def __init__(self, db_path: str = "grocy_sync.db"):
        """
        Initialize repository with SQLite database

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialize_database()

    def _initialize_database(self) -> None:
        """Initialize SQLite database with schema"""
        try:
            logger.info(f"Initializing cache database at {self.db_path}")
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA_SQL)
            self.conn.commit()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def close(self) -> None:
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @staticmethod
    def _row_to_record(record_cls: Type, row: sqlite3.Row):
        values = dict(row)
        for f in dataclasses.fields(record_cls):
            if f.type is bool:
                values[f.name] = bool(values[f.name])
        return record_cls(**values)

    def _load_table(self, entity_type: EntityType) -> tuple:
        table, record_cls = TABLES[entity_type]
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT * FROM {table} ORDER BY id")
        return tuple(self._row_to_record(record_cls, row) for row in cursor.fetchall())

    def _replace_table(self, cursor: sqlite3.Cursor, entity_type: EntityType,
                       records: Iterable) -> None:
        table, _ = TABLES[entity_type]
        cursor.execute(f"DELETE FROM {table}")
        self._insert(cursor, table, records)

    @staticmethod
    def _insert(cursor: sqlite3.Cursor, table: str, records: Iterable) -> None:
        rows = [dataclasses.asdict(record) for record in records]
        if not rows:
            return
        columns = list(rows[0].keys())
        placeholders = ", ".join("?" for _ in columns)
        cursor.executemany(
            f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [tuple(row[c] for c in columns) for row in rows],
        )

    def load_snapshot(self) -> Snapshot:
        """
        Load the cached snapshot of every resource type

        Returns:
            Snapshot; shopping list items carry their pending local state
        """
        with self._lock:
            try:
                snapshot = Snapshot()
                for entity_type in TABLES:
                    snapshot = snapshot.replace_entity(entity_type, self._load_table(entity_type))
                logger.debug(f"Loaded {len(snapshot.items)} items and "
                             f"{len(snapshot.lists)} lists from cache")
                return snapshot
            except Exception as e:
                logger.error(f"Failed to load snapshot: {e}")
                raise

    def pending_mutations(self) -> List[ShoppingListItem]:
        """Items changed locally and not yet confirmed by the server"""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM shopping_list_items WHERE done_synced != ? ORDER BY id",
                           (NOT_PENDING,))
            return [self._row_to_record(ShoppingListItem, row) for row in cursor.fetchall()]

    def persist_snapshot(
        self,
        items: Optional[Sequence[ShoppingListItem]] = None,
        lists: Optional[Sequence[ShoppingList]] = None,
        groups: Optional[Sequence[ProductGroup]] = None,
        units: Optional[Sequence[QuantityUnit]] = None,
        products: Optional[Sequence[Product]] = None,
        missing_items: Optional[Sequence[MissingItem]] = None,
    ) -> SyncDiff:
        """
        Replace downloaded resource types and diff pending mutations

        A None argument means the type was not downloaded and its cached
        table is kept. Pending local mutations survive the replacement: they
        are kept in the stored rows until the server confirms them.

        Returns:
            (pending mutations still to push, server item by id)
        """
        downloaded = {
            EntityType.SHOPPING_LIST_ITEMS: items,
            EntityType.SHOPPING_LISTS: lists,
            EntityType.PRODUCT_GROUPS: groups,
            EntityType.QUANTITY_UNITS: units,
            EntityType.PRODUCTS: products,
            EntityType.MISSING_ITEMS: missing_items,
        }

        with self._lock:
            to_sync, server_items = None, None
            if items is not None:
                to_sync, server_items, stored_items = self._diff_against(items)
                downloaded[EntityType.SHOPPING_LIST_ITEMS] = stored_items

            try:
                cursor = self.conn.cursor()
                for entity_type, records in downloaded.items():
                    if records is not None:
                        self._replace_table(cursor, entity_type, records)
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to persist snapshot: {e}")
                raise

            if to_sync is None:
                return self.diff_cached()

            logger.info(f"Persisted snapshot, {len(to_sync)} pending mutation(s) to push")
            return to_sync, server_items

    def _diff_against(self, items: Sequence[ShoppingListItem]):
        server_items = {item.id: item for item in items}
        stored = dict(server_items)
        to_sync = []

        for local in self.pending_mutations():
            server = server_items.get(local.id)
            if server is None:
                logger.warning(f"Dropping pending change of item {local.id}: "
                               f"no longer exists on the server")
                continue
            if server.done == local.done:
                logger.debug(f"Pending change of item {local.id} already reflected server-side")
                continue
            to_sync.append(local)
            stored[local.id] = dataclasses.replace(
                server, done=local.done, done_synced=local.done_synced
            )

        return to_sync, server_items, list(stored.values())

    def diff_cached(self) -> SyncDiff:
        """
        Diff pending mutations against the cache when nothing was downloaded

        The shadow field holds the last server-known value, so it stands in
        for the server copy. Pending entries equal to their shadow (toggled
        back) are cleared without a push.

        Returns:
            (pending mutations still to push, server item by id)
        """
        with self._lock:
            to_sync = []
            cleared = []
            server_items = {item.id: item for item in self._load_table(EntityType.SHOPPING_LIST_ITEMS)}

            for local in self.pending_mutations():
                server_items[local.id] = local.with_confirmed_done(local.done_synced)
                if local.done == local.done_synced:
                    cleared.append(local.with_confirmed_done(local.done))
                else:
                    to_sync.append(local)

            if cleared:
                self.upsert_items(*cleared)
                logger.debug(f"Cleared {len(cleared)} pending change(s) toggled back locally")
            return to_sync, server_items

    def upsert_items(self, *items: ShoppingListItem) -> None:
        """Insert or replace shopping list items"""
        with self._lock:
            try:
                cursor = self.conn.cursor()
                self._insert(cursor, "shopping_list_items", items)
                self.conn.commit()
                logger.debug(f"Upserted {len(items)} item(s)")
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to upsert items: {e}")
                raise

    def delete_item(self, item_id: int) -> None:
        with self._lock:
            try:
                self.conn.execute("DELETE FROM shopping_list_items WHERE id = ?", (item_id,))
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to delete item {item_id}: {e}")
                raise

    def get_statistics(self) -> Dict[str, int]:
        """Row counts per cached table"""
        with self._lock:
            stats = {}
            cursor = self.conn.cursor()
            for table, _ in TABLES.values():
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
            stats["pending_mutations"] = len(self.pending_mutations())
            return stats
