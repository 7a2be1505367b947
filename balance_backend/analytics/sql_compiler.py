"""Compile filter conditions and metric aggregates into parameterized SQL fragments.

Key invariant: request values only ever travel as bound ``?`` parameters.
Identifiers (tables, columns, aliases) are checked against the identifier
pattern before they are interpolated.
"""
from __future__ import annotations

from typing import Any, Collection, Iterable

from .errors import AnalyticsCompilationError, FilterValidationError
from .models import LIST_OPERATORS, BaseMetric, FilterCondition, is_identifier

_COMPARISON_SQL: dict[str, str] = {
    "eq": "=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

_AGGREGATE_SQL: dict[str, str] = {
    "sum": "SUM",
    "avg": "AVG",
    "min": "MIN",
    "max": "MAX",
    "count": "COUNT",
}


def require_identifier(name: str) -> str:
    if not is_identifier(name):
        raise FilterValidationError(f"Invalid field name: {name!r}")
    return name


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------

def compile_condition(filt: FilterCondition) -> tuple[str, list[Any]]:
    col = require_identifier(filt.field)
    op = filt.operator

    if op in LIST_OPERATORS:
        values = filt.value if isinstance(filt.value, list) else [filt.value]
        if not values:
            # Empty IN matches nothing, empty NOT IN matches everything.
            return ("1 = 0" if op == "in" else "1 = 1"), []
        placeholders = ", ".join(["?"] * len(values))
        keyword = "IN" if op == "in" else "NOT IN"
        return f"{col} {keyword} ({placeholders})", list(values)

    if op in _COMPARISON_SQL:
        if isinstance(filt.value, list):
            raise FilterValidationError(f"Operator '{op}' on '{filt.field}' requires a single value")
        return f"{col} {_COMPARISON_SQL[op]} ?", [filt.value]

    raise FilterValidationError(f"Unsupported operator: {op}")


def compile_where(filters: Iterable[FilterCondition]) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for f in filters:
        clause, p = compile_condition(f)
        clauses.append(clause)
        params.extend(p)
    if not clauses:
        return "", []
    return "WHERE " + " AND ".join(clauses), params


def applicable_filters(
    filters: Iterable[FilterCondition],
    table_columns: Collection[str],
    excluded_fields: Collection[str] = (),
) -> list[FilterCondition]:
    """Keep filters whose column exists in the table and is not excluded for it."""
    kept: list[FilterCondition] = []
    for f in filters:
        require_identifier(f.field)
        if f.field in excluded_fields:
            continue
        if f.field in table_columns:
            kept.append(f)
    return kept


def compile_where_for_table(
    filters: Iterable[FilterCondition],
    table_columns: Collection[str],
    excluded_fields: Collection[str] = (),
) -> tuple[str, list[Any]]:
    return compile_where(applicable_filters(filters, table_columns, excluded_fields))


# ------------------------------------------------------------------
# Metric expressions
# ------------------------------------------------------------------

def aggregate_expression(metric: BaseMetric) -> str:
    """Aggregate that yields 0 instead of NULL over an empty input."""
    fn = _AGGREGATE_SQL.get(metric.aggregation)
    if fn is None:
        raise AnalyticsCompilationError(f"Unsupported aggregation: {metric.aggregation}")
    if metric.aggregation == "count":
        return f"COUNT({metric.field})"
    return f"COALESCE({fn}({metric.field}), 0)"


def yoy_variance_expression(current_ref: str, previous_ref: str) -> str:
    """Percentage change from ``previous_ref`` to ``current_ref``; 0 when there is no base."""
    return (
        f"CASE WHEN COALESCE({previous_ref}, 0) != 0 "
        f"THEN (COALESCE({current_ref}, 0) - {previous_ref}) * 100.0 / {previous_ref} "
        f"ELSE 0 END"
    )


def qualified_table(table: str, prefix: str = "") -> str:
    name = f"{prefix}{table}"
    if not is_identifier(name):
        raise AnalyticsCompilationError(f"Invalid table name: {name!r}")
    return name


def pagination_clause(limit: int | None, offset: int | None) -> str:
    if limit is None:
        return ""
    if limit < 0 or (offset is not None and offset < 0):
        raise AnalyticsCompilationError("limit and offset must be non-negative")
    clause = f"LIMIT {int(limit)}"
    if offset:
        clause += f" OFFSET {int(offset)}"
    return clause
