from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Aggregation = Literal["sum", "avg", "count", "min", "max"]

FilterOperator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in"]

OrderDirection = Literal["asc", "desc"]

FILTER_OPERATORS: frozenset[str] = frozenset(
    {"eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in"}
)
LIST_OPERATORS: frozenset[str] = frozenset({"in", "not_in"})

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(value: str) -> bool:
    return bool(IDENTIFIER_RE.match(value))


class BaseMetric(BaseModel):
    """Aggregation of one column of one fact table, exposed under a stable alias."""
    model_config = ConfigDict(frozen=True)

    table: str
    field: str
    aggregation: Aggregation
    alias: str

    @field_validator("table", "field", "alias")
    @classmethod
    def _validate_identifier(cls, v: str) -> str:
        if not is_identifier(v):
            raise ValueError(f"'{v}' is not a valid SQL identifier")
        return v


class CalculatedMetric(BaseModel):
    """Metric derived from base/calculated metrics through a SQL formula template.

    ``formula`` references its dependencies as ``{alias}`` placeholders. It is
    trusted configuration: request values never end up inside a formula.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    dependencies: tuple[str, ...]
    formula: str

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not is_identifier(v):
            raise ValueError(f"'{v}' is not a valid SQL identifier")
        return v


class MetricsConfig(BaseModel):
    """Root of ``metrics.yaml``."""
    model_config = ConfigDict(frozen=True)

    tables: tuple[str, ...]
    primary_table: str = "transactions"
    dimensions: tuple[str, ...] = ()
    dimension_names: dict[str, str] = Field(default_factory=dict)
    filterable_columns: tuple[str, ...] = ()
    table_filter_exclusions: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    default_order_by: str | None = None
    base_metrics: tuple[BaseMetric, ...] = ()
    calculated_metrics: tuple[CalculatedMetric, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _coerce_nulls(cls, values: dict) -> dict:
        """Empty YAML sections load as ``None``; treat them as absent."""
        if isinstance(values, dict):
            return {k: v for k, v in values.items() if v is not None}
        return values


class FilterCondition(BaseModel):
    """One predicate of a request; a request's filters are AND-combined."""
    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator
    value: Union[str, list[str]]


@dataclass(frozen=True)
class DimensionFieldPair:
    id_field: str
    name_field: str


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    parameters: list[object]
