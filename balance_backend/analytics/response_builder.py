"""Reshape raw query rows into the registry-defined response shape."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from .registry import LAST_YEAR_SUFFIX, VS_LAST_YEAR_SUFFIX, MetricRegistry


def _number(value: Any) -> float | int:
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def build_dynamic_response(raw_row: Mapping[str, Any], registry: MetricRegistry) -> dict[str, float | int]:
    """Return exactly the registry's response fields, missing values as 0.

    Last-year values are read from the ``<alias>_ly`` columns the query
    returns, falling back to ``<alias>_last_year``.
    """
    response: dict[str, float | int] = {}
    for alias in registry.base_metric_aliases():
        last_year = raw_row.get(f"{alias}_ly")
        if last_year is None:
            last_year = raw_row.get(f"{alias}{LAST_YEAR_SUFFIX}")
        response[alias] = _number(raw_row.get(alias))
        response[f"{alias}{LAST_YEAR_SUFFIX}"] = _number(last_year)
        response[f"{alias}{VS_LAST_YEAR_SUFFIX}"] = _number(raw_row.get(f"{alias}{VS_LAST_YEAR_SUFFIX}"))
    for name in registry.calculated_metric_names():
        response[name] = _number(raw_row.get(name))
    return response


def build_dynamic_response_array(
    rows: Iterable[Mapping[str, Any]], registry: MetricRegistry
) -> list[dict[str, float | int]]:
    return [build_dynamic_response(row, registry) for row in rows]
