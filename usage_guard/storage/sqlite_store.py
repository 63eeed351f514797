"""
SQLite-backed usage store.

Persists usage records as JSON payloads so counters survive a restart.
Record locks are process-local; run a single worker process per database
file or use a shared key-value store instead.
"""

import json
from typing import List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .store import RECORD_TYPES, Record, UsageStore


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage_record table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                payload TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)
        conn.commit()
    finally:
        conn.close()


class SQLiteUsageStore(UsageStore):
    """Usage store persisted to a SQLite database file."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, create_schema: bool = True):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
            create_schema: Create the table on startup if missing
        """
        super().__init__()
        self.db_path = db_path
        if create_schema:
            initialize_schema(db_path)

    @staticmethod
    def _decode(namespace: str, payload: str) -> Record:
        return RECORD_TYPES[namespace].from_dict(json.loads(payload))

    @staticmethod
    def _check_namespace(namespace: str) -> None:
        if namespace not in RECORD_TYPES:
            raise ValueError(f"Unknown namespace: {namespace}")

    def get(self, namespace: str, key: str) -> Optional[Record]:
        self._check_namespace(namespace)
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM usage_record WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        finally:
            conn.close()
        return self._decode(namespace, row[0]) if row else None

    def set(self, namespace: str, key: str, record: Record) -> None:
        self._check_namespace(namespace)
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO usage_record (namespace, key, payload) VALUES (?, ?, ?)",
                (namespace, key, json.dumps(record.to_dict())),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, namespace: str, key: str) -> bool:
        self._check_namespace(namespace)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM usage_record WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def items(self, namespace: str) -> List[Tuple[str, Record]]:
        self._check_namespace(namespace)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT key, payload FROM usage_record WHERE namespace = ? ORDER BY key",
                (namespace,),
            ).fetchall()
        finally:
            conn.close()
        return [(key, self._decode(namespace, payload)) for key, payload in rows]

    def clear(self) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM usage_record")
            conn.commit()
        finally:
            conn.close()
