from __future__ import annotations

from typing import Any, Sequence

import pandas as pd
import pytest

from balance_backend.analytics.query_builder import AnalyticsQueryBuilder
from balance_backend.analytics.registry import MetricRegistry, load_registry, registry_from_dict
from balance_backend.repositories import SQLiteStoreClient


class RecordingClient:
    """Store client double: records every statement and answers catalog lookups."""

    def __init__(self, columns: dict[str, list[str]], rows: list[dict[str, Any]] | None = None) -> None:
        self.columns = columns
        self.rows = rows or []
        self.calls: list[tuple[str, list[Any]]] = []

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self.calls.append((sql, list(params)))
        if "sqlite_master" in sql:
            return [
                {"table_name": t, "column_name": c}
                for t in params
                for c in self.columns.get(t, [])
            ]
        return [dict(r) for r in self.rows]


TRANSACTION_COLUMNS = [
    "date", "seller_id", "seller_name", "region_id", "region_name",
    "customer_id", "customer_name", "brand", "channel", "month", "sales_price", "gross_margin",
]
BUDGET_COLUMNS = ["date", "seller_id", "region_id", "channel", "month", "sales_price", "cost_price"]
HELD_ORDER_COLUMNS = ["date", "region_id", "channel", "sales_price"]


@pytest.fixture
def registry() -> MetricRegistry:
    return load_registry(force_reload=True)


@pytest.fixture
def sales_only_registry() -> MetricRegistry:
    return registry_from_dict({
        "tables": ["transactions"],
        "dimensions": ["seller_id", "month"],
        "dimension_names": {"seller_id": "seller_name"},
        "base_metrics": [
            {"table": "transactions", "field": "sales_price", "aggregation": "sum", "alias": "sales"},
        ],
    })


@pytest.fixture
def recording_client() -> RecordingClient:
    return RecordingClient({
        "transactions": TRANSACTION_COLUMNS,
        "budget": BUDGET_COLUMNS,
        "held_orders": HELD_ORDER_COLUMNS,
    })


@pytest.fixture
def transactions_df() -> pd.DataFrame:
    return pd.DataFrame([
        {"date": "2024-03-10", "seller_id": "S1", "seller_name": "Alice", "region_id": "R1", "region_name": "North",
         "customer_id": "C1", "customer_name": "Acme", "brand": "Apple", "channel": "Online", "month": "2024-03",
         "sales_price": 100.0, "gross_margin": 40.0},
        {"date": "2024-03-20", "seller_id": "S2", "seller_name": "Bob", "region_id": "R1", "region_name": "North",
         "customer_id": "C2", "customer_name": "Globex", "brand": "Banana", "channel": "Retail", "month": "2024-03",
         "sales_price": 200.0, "gross_margin": 50.0},
        {"date": "2023-03-15", "seller_id": "S1", "seller_name": "Alice", "region_id": "R1", "region_name": "North",
         "customer_id": "C1", "customer_name": "Acme", "brand": "Cherry", "channel": "Online", "month": "2023-03",
         "sales_price": 50.0, "gross_margin": 20.0},
        {"date": "2023-03-18", "seller_id": "S2", "seller_name": "Bob", "region_id": "R1", "region_name": "North",
         "customer_id": "C2", "customer_name": "Globex", "brand": "Apple", "channel": "Retail", "month": "2023-03",
         "sales_price": 100.0, "gross_margin": 10.0},
    ])


@pytest.fixture
def budget_df() -> pd.DataFrame:
    return pd.DataFrame([
        {"date": "2024-03-01", "seller_id": "S1", "region_id": "R1", "channel": "Retail", "month": "2024-03",
         "sales_price": 250.0, "cost_price": 150.0},
        {"date": "2023-03-01", "seller_id": "S1", "region_id": "R1", "channel": "Retail", "month": "2023-03",
         "sales_price": 100.0, "cost_price": 60.0},
    ])


@pytest.fixture
def held_orders_df() -> pd.DataFrame:
    return pd.DataFrame([
        {"date": "2024-03-05", "region_id": "R1", "channel": "Online", "sales_price": 30.0},
    ])


@pytest.fixture
def store(transactions_df, budget_df, held_orders_df) -> SQLiteStoreClient:
    client = SQLiteStoreClient.connect(":memory:")
    client.load_dataframe("transactions", transactions_df)
    client.load_dataframe("budget", budget_df)
    client.load_dataframe("held_orders", held_orders_df)
    yield client
    client.close()


@pytest.fixture
def builder(store, registry) -> AnalyticsQueryBuilder:
    return AnalyticsQueryBuilder(store, registry)


@pytest.fixture
def make_recording_client():
    return RecordingClient
