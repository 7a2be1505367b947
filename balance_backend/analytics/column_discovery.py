"""Discover which columns exist in the fact tables, with a TTL cache."""
from __future__ import annotations

import logging
import threading
import time
from typing import Iterable

from ..repositories.analytics_repository import StoreClient

logger = logging.getLogger(__name__)


class ColumnDiscoveryService:
    """Read table columns from the store catalog.

    Results are cached per set of tables for ``ttl_seconds``. Tables missing
    from the store map to an empty set.
    """

    COLUMNS_SQL = (
        "SELECT m.name AS table_name, p.name AS column_name "
        "FROM sqlite_master AS m "
        "JOIN pragma_table_info(m.name) AS p "
        "WHERE m.type IN ('table', 'view') AND m.name IN ({placeholders}) "
        "ORDER BY m.name, p.cid"
    )

    def __init__(self, client: StoreClient, ttl_seconds: float = 300.0) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._cache: dict[tuple[str, ...], tuple[float, dict[str, frozenset[str]]]] = {}
        self._lock = threading.Lock()

    def get_columns_for_tables(self, table_names: Iterable[str]) -> dict[str, frozenset[str]]:
        key = tuple(sorted(set(table_names)))
        if not key:
            return {}

        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and now - cached[0] < self._ttl:
                logger.debug("Column cache hit for %s", ", ".join(key))
                return cached[1]

        logger.debug("Column cache miss for %s", ", ".join(key))
        sql = self.COLUMNS_SQL.format(placeholders=", ".join(["?"] * len(key)))
        rows = self._client.query(sql, list(key))

        found: dict[str, set[str]] = {t: set() for t in key}
        for row in rows:
            found.setdefault(str(row["table_name"]), set()).add(str(row["column_name"]))
        result = {t: frozenset(cols) for t, cols in found.items()}

        with self._lock:
            self._cache[key] = (now, result)
        return result

    def column_exists(self, table_name: str, column: str) -> bool:
        return column in self.get_columns_for_tables([table_name]).get(table_name, frozenset())

    def filter_existing_columns(self, table_name: str, columns: Iterable[str]) -> list[str]:
        existing = self.get_columns_for_tables([table_name]).get(table_name, frozenset())
        return [c for c in columns if c in existing]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
