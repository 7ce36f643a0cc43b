"""
SQLite canonical store for historical records and their embeddings.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from . import config
from .config import ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or config.DB_PATH, timeout=30)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                record_id TEXT PRIMARY KEY,
                catalog_id TEXT NOT NULL,
                catalog_path TEXT NOT NULL,
                text TEXT NOT NULL,
                embedding BLOB,          -- float32 bytes, present when status = 'embedded'
                status TEXT NOT NULL DEFAULT 'pending',
                last_error TEXT,
                updated_at TEXT NOT NULL,
                claim_token TEXT,        -- set while an indexer worker holds the record
                claimed_at REAL
            )
        ''')

        # Explicitly archived records leave the working set but are never lost
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records_archive (
                record_id TEXT PRIMARY KEY,
                catalog_id TEXT NOT NULL,
                catalog_path TEXT NOT NULL,
                text TEXT NOT NULL,
                embedding BLOB,
                status TEXT NOT NULL,
                last_error TEXT,
                updated_at TEXT NOT NULL,
                archived_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_status ON records(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_catalog_id ON records(catalog_id)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in ['records', 'records_archive'])
    except sqlite3.Error:
        return False
