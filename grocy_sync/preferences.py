"""Persisted key/value preferences: sync timestamps, selected list, feature flags"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .models import EntityType

logger = logging.getLogger(__name__)

SHOPPING_LIST_LAST_ID = "shopping_list_last_id"
FEATURE_MULTIPLE_SHOPPING_LISTS = "feature_multiple_shopping_lists"


class PreferenceStore:
    """Small SQLite-backed key/value store"""

    def __init__(self, db_path: str = "grocy_sync.db"):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS preferences (key TEXT PRIMARY KEY, value TEXT)"
        )
        self.conn.commit()

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row and row[0] is not None else default

    def set_string(self, key: str, value: Optional[str]) -> None:
        with self._lock:
            if value is None:
                self.conn.execute("DELETE FROM preferences WHERE key = ?", (key,))
            else:
                self.conn.execute(
                    "INSERT OR REPLACE INTO preferences (key, value) VALUES (?, ?)",
                    (key, value),
                )
            self.conn.commit()

    def get_int(self, key: str, default: int) -> int:
        value = self.get_string(key)
        try:
            return int(value) if value is not None else default
        except ValueError:
            logger.warning(f"Preference '{key}' is not an integer: {value!r}")
            return default

    def set_int(self, key: str, value: int) -> None:
        self.set_string(key, str(int(value)))

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get_string(key)
        if value is None:
            return default
        return value == "1"

    def set_bool(self, key: str, value: bool) -> None:
        self.set_string(key, "1" if value else "0")

    def has(self, key: str) -> bool:
        return self.get_string(key) is not None

    def last_synced(self, entity_type: EntityType) -> Optional[str]:
        """Server change timestamp the cached snapshot of a type was fetched under"""
        return self.get_string(entity_type.preference_key)

    def set_last_synced(self, entity_type: EntityType, timestamp: Optional[str]) -> None:
        """None forgets the timestamp, so the type is downloaded next sync"""
        self.set_string(entity_type.preference_key, timestamp)

    def clear_last_synced(self) -> None:
        """Forget all sync timestamps so the next sync downloads everything"""
        for entity_type in EntityType:
            self.set_string(entity_type.preference_key, None)
