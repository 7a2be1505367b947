"""Validate request parameters before any SQL is constructed."""
from __future__ import annotations

import logging
from typing import Iterable

from .errors import FilterValidationError, QueryValidationError
from .models import FILTER_OPERATORS, FilterCondition, OrderDirection, is_identifier
from .registry import LAST_YEAR_SUFFIX, VS_LAST_YEAR_SUFFIX, MetricRegistry

logger = logging.getLogger(__name__)


def validate_group_by(group_by: str | None, registry: MetricRegistry) -> str:
    """Return ``group_by`` if it is one of the allowed dimensions."""
    if not group_by:
        raise QueryValidationError("groupBy is required")
    if group_by not in registry.dimensions:
        raise QueryValidationError(
            f"Invalid groupBy '{group_by}'. Must be one of: {', '.join(registry.dimensions)}"
        )
    return group_by


def validate_order_direction(direction: str | None) -> OrderDirection:
    if direction is None:
        return "desc"
    normalized = direction.strip().lower()
    if normalized not in ("asc", "desc"):
        raise QueryValidationError(f"Invalid orderDirection '{direction}'. Must be 'asc' or 'desc'")
    return normalized  # type: ignore[return-value]


def resolve_order_by(order_by: str | None, registry: MetricRegistry) -> str:
    """Map a requested ordering field to the output column it sorts on.

    Unknown or missing fields fall back to the registry default. Last-year
    fields sort on the ``_ly`` columns the query actually returns.
    """
    field = order_by
    if not field or field not in registry.order_by_fields():
        if field:
            logger.debug("Unknown orderBy '%s', using '%s'", field, registry.default_order_by)
        field = registry.default_order_by

    if field.endswith(LAST_YEAR_SUFFIX) and not field.endswith(VS_LAST_YEAR_SUFFIX):
        alias = field[: -len(LAST_YEAR_SUFFIX)]
        if alias in registry.base_metric_aliases():
            return f"{alias}_ly"
    return field


def validate_pagination(
    page: int,
    limit: int,
    *,
    min_limit: int,
    max_limit: int,
) -> tuple[int, int]:
    """Return ``(limit, offset)`` for a 1-based page."""
    if page < 1:
        raise QueryValidationError("page must be >= 1")
    if limit < min_limit or limit > max_limit:
        raise QueryValidationError(f"limit must be between {min_limit} and {max_limit}")
    return limit, (page - 1) * limit


def validate_filters(filters: Iterable[FilterCondition], registry: MetricRegistry) -> None:
    """Reject filters on columns outside the allow-list or with unknown operators."""
    allowed = set(registry.filterable_columns())
    for f in filters:
        if not is_identifier(f.field) or f.field not in allowed:
            raise FilterValidationError(f"Filtering on '{f.field}' is not allowed")
        if f.operator not in FILTER_OPERATORS:
            raise FilterValidationError(f"Unknown filter operator '{f.operator}'")


def validate_label_column(column: str | None, registry: MetricRegistry) -> str:
    if not column:
        raise QueryValidationError("column is required")
    if not is_identifier(column) or column not in registry.filterable_columns():
        raise QueryValidationError(f"Invalid column '{column}'")
    return column
