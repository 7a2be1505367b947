"""
Compile and execute year-over-year analytics queries.

Every operation issues exactly one statement against the store. Per-table
current/previous CTE pairs are joined into a single result so the cost of a
request does not grow with the number of metrics.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Sequence

from ..repositories.analytics_repository import StoreClient
from .column_discovery import ColumnDiscoveryService
from .errors import AnalyticsExecutionError, QueryValidationError
from .filters import shift_date_filters
from .metric_calculator import MetricCalculator
from .models import BaseMetric, CompiledQuery, FilterCondition
from .registry import VS_LAST_YEAR_SUFFIX, MetricRegistry
from .sql_compiler import (
    aggregate_expression,
    compile_condition,
    compile_where_for_table,
    pagination_clause,
    qualified_table,
    require_identifier,
    yoy_variance_expression,
)
from .validator import resolve_order_by, validate_group_by, validate_order_direction

logger = logging.getLogger(__name__)

SKIPPED_CTE = "skipped_metrics"
DEFAULT_MAX_DISTINCT_VALUES = 10_000


def _cte(
    name: str,
    selects: Sequence[str],
    source: str,
    where: str,
    group_by: Sequence[str] = (),
) -> str:
    lines = [f"{name} AS (", f"  SELECT {', '.join(selects)}", f"  FROM {source}"]
    if where:
        lines.append(f"  {where}")
    if group_by:
        lines.append(f"  GROUP BY {', '.join(group_by)}")
    lines.append(")")
    return "\n".join(lines)


def _with_query(ctes: Sequence[str], selects: Sequence[str], tail: Sequence[str]) -> str:
    return "\n".join([
        "WITH",
        ",\n".join(ctes),
        "SELECT",
        "  " + ",\n  ".join(selects),
        *tail,
    ])


class AnalyticsQueryBuilder:
    """Builds one multi-CTE query per request and runs it through ``client``."""

    def __init__(
        self,
        client: StoreClient,
        registry: MetricRegistry,
        *,
        table_prefix: str = "",
        column_discovery: ColumnDiscoveryService | None = None,
        max_distinct_values: int = DEFAULT_MAX_DISTINCT_VALUES,
    ) -> None:
        self._client = client
        self._registry = registry
        self._prefix = table_prefix
        self._columns = column_discovery or ColumnDiscoveryService(client)
        self._calculator = MetricCalculator(registry)
        self._max_distinct = max_distinct_values

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def build_multi_table_yoy_query(
        self,
        metrics: Sequence[BaseMetric],
        current_period_filters: Sequence[FilterCondition],
    ) -> dict[str, Any]:
        """Single aggregate row: ``alias``, ``alias_ly``, ``alias_vs_last_year`` and calculated metrics."""
        def run() -> dict[str, Any]:
            compiled = self.compile_multi_table_yoy(metrics, current_period_filters)
            rows = self._execute(compiled)
            return dict(rows[0]) if rows else {}

        return await asyncio.to_thread(run)

    async def build_grouped_multi_table_yoy_query(
        self,
        metrics: Sequence[BaseMetric],
        current_period_filters: Sequence[FilterCondition],
        group_by: str,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> list[dict[str, Any]]:
        """One row per ``group_by`` value, with ``id``, ``name`` and ``_total_count`` when paginated."""
        def run() -> list[dict[str, Any]]:
            compiled = self.compile_grouped_multi_table_yoy(
                metrics,
                current_period_filters,
                group_by,
                limit=limit,
                offset=offset,
                order_by=order_by,
                order_direction=order_direction,
            )
            return [dict(r) for r in self._execute(compiled)]

        return await asyncio.to_thread(run)

    async def build_distinct_values_query(
        self,
        table: str,
        column: str,
        filters: Sequence[FilterCondition],
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[str]:
        """Distinct non-empty values of ``column``, ascending."""
        def run() -> list[str]:
            compiled = self.compile_distinct_values(table, column, filters, limit, offset)
            return [str(r["value"]) for r in self._execute(compiled)]

        return await asyncio.to_thread(run)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def group_metrics_by_table(self, metrics: Iterable[BaseMetric]) -> dict[str, list[BaseMetric]]:
        """Group metrics per table, primary table first, otherwise first-seen order."""
        grouped: dict[str, list[BaseMetric]] = {}
        for m in metrics:
            grouped.setdefault(m.table, []).append(m)
        primary = self._registry.primary_table
        if primary in grouped:
            grouped = {primary: grouped.pop(primary), **grouped}
        return grouped

    def compile_multi_table_yoy(
        self,
        metrics: Sequence[BaseMetric],
        current_period_filters: Sequence[FilterCondition],
    ) -> CompiledQuery:
        metrics_by_table = self._require_metrics(metrics)
        current_filters = list(current_period_filters)
        previous_filters = shift_date_filters(current_filters, -1)
        column_map = self._discover(metrics_by_table)

        ctes: list[str] = []
        params: list[Any] = []
        selects: list[str] = []
        joins: list[str] = []

        for table, table_metrics in metrics_by_table.items():
            source = qualified_table(table, self._prefix)
            columns = column_map.get(source, frozenset())
            current, previous = f"{table}_current", f"{table}_previous"

            for cte_name, filters, suffix in (
                (current, current_filters, ""),
                (previous, previous_filters, "_ly"),
            ):
                where, where_params = self._table_where(table, filters, columns)
                aggregates = [f"{aggregate_expression(m)} AS {m.alias}{suffix}" for m in table_metrics]
                ctes.append(_cte(cte_name, aggregates, source, where))
                params.extend(where_params)
                joins.append(cte_name)

            for m in table_metrics:
                cur_ref, prev_ref = f"{current}.{m.alias}", f"{previous}.{m.alias}_ly"
                selects.append(f"{cur_ref} AS {m.alias}")
                selects.append(f"{prev_ref} AS {m.alias}_ly")
                selects.append(
                    f"{yoy_variance_expression(cur_ref, prev_ref)} AS {m.alias}{VS_LAST_YEAR_SUFFIX}"
                )

        self._calculator.add_calculated_metrics(selects, metrics_by_table)

        # Every CTE is a single aggregate row.
        tail = [f"FROM {joins[0]}", *(f"CROSS JOIN {name}" for name in joins[1:])]
        return CompiledQuery(sql=_with_query(ctes, selects, tail), parameters=params)

    def compile_grouped_multi_table_yoy(
        self,
        metrics: Sequence[BaseMetric],
        current_period_filters: Sequence[FilterCondition],
        group_by: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> CompiledQuery:
        validate_group_by(group_by, self._registry)
        require_identifier(group_by)
        direction = validate_order_direction(order_direction).upper()
        order_field = resolve_order_by(order_by, self._registry)

        metrics_by_table = self._require_metrics(metrics)
        current_filters = list(current_period_filters)
        previous_filters = shift_date_filters(current_filters, -1)
        column_map = self._discover(metrics_by_table)

        pair = self._registry.field_pair(group_by)
        id_field, name_field = pair.id_field, pair.name_field
        paired = id_field != name_field

        with_dimension = [
            t for t in metrics_by_table
            if id_field in column_map.get(qualified_table(t, self._prefix), frozenset())
        ]
        skipped = [t for t in metrics_by_table if t not in with_dimension]
        if not with_dimension:
            raise QueryValidationError(
                f"None of the requested tables has the grouping column '{id_field}'"
            )
        if skipped:
            logger.debug("Tables without '%s' report zeros: %s", id_field, ", ".join(skipped))

        ctes: list[str] = []
        params: list[Any] = []
        id_refs: list[str] = []
        name_refs: list[str] = []
        metric_selects: list[str] = []

        for table, table_metrics in metrics_by_table.items():
            current, previous = f"{table}_current", f"{table}_previous"

            if table in skipped:
                for m in table_metrics:
                    metric_selects.append(f"0 AS {m.alias}")
                    metric_selects.append(f"0 AS {m.alias}_ly")
                    metric_selects.append(f"0 AS {m.alias}{VS_LAST_YEAR_SUFFIX}")
                continue

            source = qualified_table(table, self._prefix)
            columns = column_map.get(source, frozenset())
            has_name = paired and name_field in columns

            dimension_selects = [f"TRIM({id_field}) AS {id_field}"]
            group_exprs = [f"TRIM({id_field})"]
            if has_name:
                dimension_selects.append(f"TRIM({name_field}) AS {name_field}")
                group_exprs.append(f"TRIM({name_field})")

            for cte_name, filters, suffix in (
                (current, current_filters, ""),
                (previous, previous_filters, "_ly"),
            ):
                where, where_params = self._table_where(table, filters, columns)
                aggregates = [f"{aggregate_expression(m)} AS {m.alias}{suffix}" for m in table_metrics]
                ctes.append(_cte(cte_name, [*dimension_selects, *aggregates], source, where, group_exprs))
                params.extend(where_params)

                id_refs.append(f"{cte_name}.{id_field}")
                if has_name:
                    name_refs.append(f"{cte_name}.{name_field}")

            for m in table_metrics:
                cur_ref, prev_ref = f"{current}.{m.alias}", f"{previous}.{m.alias}_ly"
                metric_selects.append(f"COALESCE({cur_ref}, 0) AS {m.alias}")
                metric_selects.append(f"COALESCE({prev_ref}, 0) AS {m.alias}_ly")
                metric_selects.append(
                    f"{yoy_variance_expression(cur_ref, prev_ref)} AS {m.alias}{VS_LAST_YEAR_SUFFIX}"
                )

        if skipped:
            # Calculated formulas reference skipped metrics by bare name; this
            # single zero row gives those names something to resolve against.
            zero_columns: list[str] = []
            for table in skipped:
                for m in metrics_by_table[table]:
                    zero_columns.append(f"0 AS {m.alias}")
                    zero_columns.append(f"0 AS {m.alias}_ly")
            ctes.append(f"{SKIPPED_CTE} AS (\n  SELECT {', '.join(zero_columns)}\n)")

        selects = [
            f"COALESCE({', '.join(id_refs)}) AS id",
            f"COALESCE({', '.join([*name_refs, *id_refs])}) AS name",
        ]
        if limit is not None:
            selects.append("COUNT(*) OVER () AS _total_count")
        selects.extend(metric_selects)
        calculated = self._calculator.resolve_calculated_metrics(metrics_by_table, set(skipped))
        selects.extend(f"{expr} AS {name}" for name, expr in calculated.items())
        order_field = self._selectable_order_field(order_field, metrics_by_table, calculated)

        first = with_dimension[0]
        tail = [
            f"FROM {first}_current",
            f"LEFT JOIN {first}_previous ON {first}_current.{id_field} = {first}_previous.{id_field}",
        ]
        for table in with_dimension[1:]:
            for cte_name in (f"{table}_current", f"{table}_previous"):
                tail.append(f"LEFT JOIN {cte_name} ON {first}_current.{id_field} = {cte_name}.{id_field}")
        if skipped:
            tail.append(f"CROSS JOIN {SKIPPED_CTE}")

        tie_breaker = "" if order_field == "id" else ", id ASC"
        tail.append(f"ORDER BY {order_field} {direction}{tie_breaker}")
        page = pagination_clause(limit, offset)
        if page:
            tail.append(page)

        return CompiledQuery(sql=_with_query(ctes, selects, tail), parameters=params)

    def compile_distinct_values(
        self,
        table: str,
        column: str,
        filters: Sequence[FilterCondition],
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledQuery:
        if table not in self._registry.tables:
            raise QueryValidationError(f"Unknown table '{table}'")
        require_identifier(column)
        source = qualified_table(table, self._prefix)

        fields = [require_identifier(f.field) for f in filters]
        try:
            exists = self._columns.column_exists(source, column)
            present = set(self._columns.filter_existing_columns(source, fields))
        except Exception as exc:
            raise AnalyticsExecutionError(f"Column discovery failed: {exc}") from exc
        if not exists:
            raise QueryValidationError(f"Column '{column}' does not exist in '{table}'")

        conditions: list[str] = []
        params: list[Any] = []
        for f in filters:
            if f.field not in present:
                continue
            clause, p = compile_condition(f)
            conditions.append(clause)
            params.extend(p)
        conditions.append(f"TRIM({column}) != ''")

        capped = self._max_distinct if limit is None else min(limit, self._max_distinct)
        sql = "\n".join([
            f"SELECT DISTINCT TRIM({column}) AS value",
            f"FROM {source}",
            "WHERE " + " AND ".join(conditions),
            "ORDER BY value ASC",
            pagination_clause(capped, offset),
        ])
        return CompiledQuery(sql=sql, parameters=params)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _selectable_order_field(
        self,
        order_field: str,
        metrics_by_table: dict[str, list[BaseMetric]],
        calculated: dict[str, str],
    ) -> str:
        """Fall back when ``order_field`` is not a column of this query.

        Calculated metrics with unresolved dependencies and metrics outside the
        requested set are not selected, so they cannot be sorted on.
        """
        available = {"id", "name", *calculated}
        for table_metrics in metrics_by_table.values():
            for m in table_metrics:
                available.update((m.alias, f"{m.alias}_ly", f"{m.alias}{VS_LAST_YEAR_SUFFIX}"))
        if order_field in available:
            return order_field

        fallback = resolve_order_by(None, self._registry)
        if fallback not in available:
            fallback = "id"
        logger.debug("Cannot order by '%s' in this query, using '%s'", order_field, fallback)
        return fallback

    def _require_metrics(self, metrics: Sequence[BaseMetric]) -> dict[str, list[BaseMetric]]:
        if not metrics:
            raise QueryValidationError("At least one metric is required")
        return self.group_metrics_by_table(metrics)

    def _table_where(
        self,
        table: str,
        filters: Sequence[FilterCondition],
        columns: frozenset[str],
    ) -> tuple[str, list[Any]]:
        return compile_where_for_table(filters, columns, self._registry.excluded_filter_fields(table))

    def _discover(self, metrics_by_table: dict[str, list[BaseMetric]]) -> dict[str, frozenset[str]]:
        names = [qualified_table(t, self._prefix) for t in metrics_by_table]
        try:
            return self._columns.get_columns_for_tables(names)
        except Exception as exc:
            raise AnalyticsExecutionError(f"Column discovery failed: {exc}") from exc

    def _execute(self, compiled: CompiledQuery) -> list[dict[str, Any]]:
        logger.debug(
            "Executing analytics query (%d params):\n%s", len(compiled.parameters), compiled.sql
        )
        try:
            return self._client.query(compiled.sql, compiled.parameters)
        except Exception as exc:
            raise AnalyticsExecutionError(str(exc)) from exc
