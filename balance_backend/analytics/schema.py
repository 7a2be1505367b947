"""Derive response schemas from the metric registry.

Nothing here is maintained by hand: adding a metric to the configuration
adds it to every generated schema and model.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, create_model

from .registry import LAST_YEAR_SUFFIX, VS_LAST_YEAR_SUFFIX, MetricRegistry


def _field_descriptions(registry: MetricRegistry) -> dict[str, str]:
    descriptions: dict[str, str] = {}
    for m in registry.list_base_metrics():
        label = m.alias.replace("_", " ")
        descriptions[m.alias] = f"{label.capitalize()}, current period"
        descriptions[f"{m.alias}{LAST_YEAR_SUFFIX}"] = f"{label.capitalize()}, same period last year"
        descriptions[f"{m.alias}{VS_LAST_YEAR_SUFFIX}"] = f"{label.capitalize()} vs last year %"
    for c in registry.list_calculated_metrics():
        descriptions[c.name] = c.description or c.name.replace("_", " ").capitalize()
    return descriptions


def generate_metrics_schema(registry: MetricRegistry) -> dict[str, dict[str, str]]:
    """JSON-schema style property map, in response field order."""
    descriptions = _field_descriptions(registry)
    return {
        name: {"type": "number", "description": descriptions[name]}
        for name in registry.all_response_field_names()
    }


def _metric_fields(registry: MetricRegistry) -> dict[str, Any]:
    descriptions = _field_descriptions(registry)
    return {
        name: (float, Field(default=0, description=descriptions[name]))
        for name in registry.all_response_field_names()
    }


def build_metrics_model(registry: MetricRegistry) -> type[BaseModel]:
    return create_model("BalanceMetrics", **_metric_fields(registry))


def build_list_item_model(registry: MetricRegistry) -> type[BaseModel]:
    return create_model(
        "BalanceListItem",
        id=(Optional[str], Field(default=None, description="Group id")),
        name=(Optional[str], Field(default=None, description="Group display name")),
        **_metric_fields(registry),
    )


class ListMetaModel(BaseModel):
    groupBy: str
    total: int
    count: int
    page: int
    limit: int
    totalPages: int


def build_balance_response_model(registry: MetricRegistry) -> type[BaseModel]:
    """``{"data": BalanceMetrics}`` envelope."""
    return create_model("BalanceResponse", data=(build_metrics_model(registry), ...))


def build_list_response_model(registry: MetricRegistry) -> type[BaseModel]:
    """``{"data": [BalanceListItem], "meta": ListMetaModel}`` envelope."""
    item = build_list_item_model(registry)
    return create_model("BalanceListResponse", data=(list[item], ...), meta=(ListMetaModel, ...))
