"""
SQLite-backed key-value store.

Backs the on-disk embedding cache. Each table maps a content hash to a
binary value plus a last-access timestamp.
"""

import sqlite3
import time
from pathlib import Path
from typing import Iterable, Optional


DEFAULT_TABLES = ("embeddings",)


class KVStore:
    """
    File-backed SQLite key-value store.

    WAL mode so a reader never blocks the writer.
    """

    def __init__(self, db_path: Path, tables: Iterable[str] = DEFAULT_TABLES):
        """
        Initialize KV store at given path.

        Args:
            db_path: Path to SQLite database file
            tables: Table names to create
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tables = tuple(tables)

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=10.0,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_tables()

    def _init_tables(self) -> None:
        for table in self.tables:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    ts INTEGER NOT NULL
                )
            """)
        self._conn.commit()

    def _check(self, table: str) -> None:
        if table not in self.tables:
            raise KeyError(f"Unknown table: {table}")

    def set(self, table: str, key: str, value: bytes) -> None:
        self._check(table)
        self._conn.execute(
            f"INSERT OR REPLACE INTO {table} (key, value, ts) VALUES (?, ?, ?)",
            (key, value, int(time.time())),
        )
        self._conn.commit()

    def get(self, table: str, key: str) -> Optional[bytes]:
        """
        Get value for a key.

        Returns:
            Binary value if found, None otherwise
        """
        self._check(table)
        row = self._conn.execute(
            f"SELECT value FROM {table} WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def delete(self, table: str, key: str) -> None:
        self._check(table)
        self._conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
        self._conn.commit()

    def purge_table(self, table: str) -> int:
        """Delete all entries from a table and return how many there were."""
        self._check(table)
        count = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        self._conn.execute(f"DELETE FROM {table}")
        self._conn.commit()
        return count

    def stats(self, table: str) -> dict:
        """Row count and payload size of a table."""
        self._check(table)
        row = self._conn.execute(
            f"SELECT COUNT(*), SUM(LENGTH(value)) FROM {table}"
        ).fetchone()
        return {"count": row[0] or 0, "total_bytes": row[1] or 0}

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
