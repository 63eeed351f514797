"""
Database connection management.

Provides SQLite connections for the persistent usage store.
"""

import sqlite3
from pathlib import Path


DEFAULT_DB_PATH = ".usage-guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection tuned for concurrent writers.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection in WAL mode with a busy timeout
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=5.0)
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
