"""
SQLite plumbing for the record store.
Values are JSON documents keyed by namespaced strings (npm:, crate:, soul:).
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import ensure_db_directory


@contextmanager
def get_db(db_path: str) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path, timeout=5.0)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str):
    """Initialize the database with required tables."""
    if db_path != ":memory:":
        ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                namespace TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Full scans filter by namespace
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_namespace ON records(namespace)')

        conn.commit()


def health_check(db_path: str) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'records' in table_names
    except sqlite3.Error:
        return False
