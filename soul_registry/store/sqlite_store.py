"""
SQLite-backed implementation of IRecordStore.
Every sqlite3 failure surfaces as StoreUnavailable; the store never retries.
"""

import json
import sqlite3
from typing import Dict, Iterable, Iterator, Optional, Tuple

from .index import IRecordStore
from ..core.db import get_db, init_db, health_check
from ..core.errors import StoreUnavailable
from ..util.logging import logger


def _namespace(key: str) -> str:
    return key.split(":", 1)[0] if ":" in key else ""


class SqliteRecordStore(IRecordStore):
    """Record store persisted in a single SQLite table."""

    def __init__(self, db_path: str):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the database file; parent directories are created
        """
        self.db_path = db_path
        try:
            init_db(db_path)
        except sqlite3.Error as e:
            logger.log_store_operation("init", db_path, {"error": str(e)}, status="failed")
            raise StoreUnavailable(f"Cannot open record store at {db_path}: {e}") from e

    def get(self, key: str) -> Optional[Dict]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT value FROM records WHERE key = ?", (key,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.log_store_operation("get", key, {"error": str(e)}, status="failed")
            raise StoreUnavailable(f"Store read failed for '{key}': {e}") from e

        return json.loads(row[0]) if row else None

    def put(self, key: str, value: Dict) -> None:
        self.put_many([(key, value)])

    def put_many(self, items: Iterable[Tuple[str, Dict]]) -> None:
        rows = [(key, _namespace(key), json.dumps(value)) for key, value in items]
        if not rows:
            return

        try:
            with get_db(self.db_path) as conn:
                # One transaction: either every key is written or none is
                with conn:
                    conn.executemany(
                        "INSERT INTO records (key, namespace, value, updated_at) VALUES (?, ?, ?, CURRENT_TIMESTAMP) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                        rows,
                    )
        except sqlite3.Error as e:
            logger.log_store_operation("put", rows[0][0], {"batch": len(rows), "error": str(e)}, status="failed")
            raise StoreUnavailable(f"Store write failed: {e}") from e

        for key, _, _ in rows:
            logger.log_store_operation("put", key)

    def iterate(self, prefix: Optional[str] = None) -> Iterator[Tuple[str, Dict]]:
        # Materialize before yielding so no connection is held across caller code
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                if prefix:
                    cursor.execute(
                        "SELECT key, value FROM records WHERE substr(key, 1, ?) = ? ORDER BY key",
                        (len(prefix), prefix),
                    )
                else:
                    cursor.execute("SELECT key, value FROM records ORDER BY key")
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.log_store_operation("iterate", prefix or "*", {"error": str(e)}, status="failed")
            raise StoreUnavailable(f"Store scan failed: {e}") from e

        for key, value in rows:
            yield key, json.loads(value)

    def delete(self, key: str) -> bool:
        try:
            with get_db(self.db_path) as conn:
                with conn:
                    cursor = conn.execute("DELETE FROM records WHERE key = ?", (key,))
                    deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.log_store_operation("delete", key, {"error": str(e)}, status="failed")
            raise StoreUnavailable(f"Store delete failed for '{key}': {e}") from e

        logger.log_store_operation("delete", key, {"deleted": deleted})
        return deleted

    def clear(self) -> None:
        try:
            with get_db(self.db_path) as conn:
                with conn:
                    conn.execute("DELETE FROM records")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Store clear failed: {e}") from e

    def count(self, prefix: Optional[str] = None) -> int:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                if prefix:
                    cursor.execute(
                        "SELECT COUNT(*) FROM records WHERE substr(key, 1, ?) = ?",
                        (len(prefix), prefix),
                    )
                else:
                    cursor.execute("SELECT COUNT(*) FROM records")
                return cursor.fetchone()[0]
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Store count failed: {e}") from e

    def health_check(self) -> bool:
        return health_check(self.db_path)
