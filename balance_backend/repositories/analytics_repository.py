from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Protocol, Sequence

import pandas as pd

logger = logging.getLogger(__name__)


class StoreClient(Protocol):
    """Minimal surface the query engine needs from an analytical store."""

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        ...


class SQLiteStoreClient:
    """SQLite-backed store client.

    The connection is shared by worker threads, so every statement runs under
    one lock.
    """

    def __init__(self, sqlite_connection: sqlite3.Connection) -> None:
        self._conn = sqlite_connection
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, db_path: str) -> "SQLiteStoreClient":
        conn = sqlite3.connect(db_path, check_same_thread=False)
        return cls(conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            rows = cursor.fetchall()
        return [dict(r) for r in rows]

    def load_dataframe(self, table: str, df: pd.DataFrame, if_exists: str = "replace") -> int:
        """Write ``df`` into ``table``; returns the number of rows written."""
        with self._lock:
            df.to_sql(table, self._conn, if_exists=if_exists, index=False)
            self._conn.commit()
        logger.info("Loaded %d rows into %s", len(df), table)
        return len(df)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
