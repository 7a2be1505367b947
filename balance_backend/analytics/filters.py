"""Turn raw request parameters into FilterCondition lists.

Parsing happens in two phases: reserved parameters (dates, pagination,
grouping, ordering) are split off first, and only the remainder is read as
dynamic column filters.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Any, Iterable, Mapping

from .errors import FilterValidationError
from .models import FILTER_OPERATORS, FilterCondition, is_identifier
from .registry import DATE_FIELD

RESERVED_PARAMS: frozenset[str] = frozenset({
    "startDate",
    "endDate",
    "groupBy",
    "page",
    "limit",
    "offset",
    "orderBy",
    "orderDirection",
    "column",
})

_OPERATOR_SUFFIX_RE = re.compile(r"^(.+?)\[(\w+)\](\[\])?$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_PARAM_LENGTH = 1000
MAX_LIST_VALUES = 100


# ------------------------------------------------------------------
# Sanitization
# ------------------------------------------------------------------

def sanitize_string(raw: str) -> str:
    if not isinstance(raw, str):
        raise FilterValidationError("Input must be a string")
    value = raw.replace("\0", "").strip()
    if len(value) > MAX_PARAM_LENGTH:
        raise FilterValidationError(f"Input too long (max {MAX_PARAM_LENGTH} characters)")
    return value


def sanitize_date_string(raw: str) -> str:
    """Validate a YYYY-MM-DD date and return it trimmed."""
    value = sanitize_string(raw)
    if not _ISO_DATE_RE.match(value):
        raise FilterValidationError(f"Invalid date format (expected YYYY-MM-DD): {raw!r}")
    try:
        date.fromisoformat(value)
    except ValueError as exc:
        raise FilterValidationError(f"Invalid date: {raw!r}") from exc
    return value


def sanitize_field_name(raw: str) -> str:
    value = sanitize_string(raw)
    if not is_identifier(value):
        raise FilterValidationError(
            f"Invalid field name {raw!r} (only letters, digits and underscore allowed)"
        )
    return value


# ------------------------------------------------------------------
# Date range filters
# ------------------------------------------------------------------

def parse_query_params_to_filters(params: Mapping[str, Any]) -> list[FilterCondition]:
    """startDate/endDate to inclusive bounds on the ``date`` column."""
    filters: list[FilterCondition] = []
    start = params.get("startDate")
    end = params.get("endDate")
    if start:
        filters.append(FilterCondition(field=DATE_FIELD, operator="gte", value=str(start)))
    if end:
        filters.append(FilterCondition(field=DATE_FIELD, operator="lte", value=str(end)))
    return filters


def shift_iso_date(value: str, years: int) -> str:
    """Shift a YYYY-MM-DD date by whole calendar years; Feb 29 lands on Feb 28."""
    try:
        d = date.fromisoformat(value)
    except ValueError as exc:
        raise FilterValidationError(f"Invalid date: {value!r}") from exc
    target_year = d.year + years
    try:
        return d.replace(year=target_year).isoformat()
    except ValueError:
        return d.replace(year=target_year, day=28).isoformat()


def shift_date_filters(filters: Iterable[FilterCondition], years: int) -> list[FilterCondition]:
    """Return copies of ``filters`` with ``date`` bounds moved by ``years``."""
    shifted: list[FilterCondition] = []
    for f in filters:
        if f.field != DATE_FIELD:
            shifted.append(f)
            continue
        if isinstance(f.value, list):
            value: str | list[str] = [shift_iso_date(v, years) for v in f.value]
        else:
            value = shift_iso_date(f.value, years)
        shifted.append(FilterCondition(field=f.field, operator=f.operator, value=value))
    return shifted


# ------------------------------------------------------------------
# Dynamic filters
# ------------------------------------------------------------------

def split_request_params(raw: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate reserved parameters from dynamic filter parameters."""
    known: dict[str, Any] = {}
    dynamic: dict[str, Any] = {}
    for key, value in raw.items():
        if key in RESERVED_PARAMS:
            known[key] = value
        else:
            dynamic[key] = value
    return known, dynamic


def _split_values(value: Any) -> list[str]:
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = []
        for v in value:
            if isinstance(v, str):
                parts.extend(v.split(","))
    else:
        return []
    values = [sanitize_string(p) for p in parts]
    values = [v for v in values if v != ""]
    if len(values) > MAX_LIST_VALUES:
        raise FilterValidationError(f"Too many filter values (max {MAX_LIST_VALUES})")
    return values


def _conditions_for(field: str, operator: str, values: list[str]) -> list[FilterCondition]:
    if operator == "neq":
        return [FilterCondition(field=field, operator="neq", value=v) for v in values]
    if operator in ("in", "not_in"):
        return [FilterCondition(field=field, operator=operator, value=values)]
    if len(values) == 1:
        return [FilterCondition(field=field, operator=operator, value=values[0])]
    if operator == "eq":
        return [FilterCondition(field=field, operator="in", value=values)]
    raise FilterValidationError(
        f"Operator '{operator}' on '{field}' accepts a single value, got {len(values)}"
    )


def parse_dynamic_filters(raw: Mapping[str, Any]) -> list[FilterCondition]:
    """
    Parse every non-reserved parameter into filter conditions.

    - ``brand=Acme`` -> eq; ``brand=Acme,Globex`` -> in
    - ``supplier[neq]=A,B`` or ``supplier[neq][]=A&supplier[neq][]=B`` -> one neq per value
    - ``brand[unknown]=x`` -> FilterValidationError
    """
    filters: list[FilterCondition] = []
    for key, value in raw.items():
        if key in RESERVED_PARAMS or value is None:
            continue

        match = _OPERATOR_SUFFIX_RE.match(key)
        if match:
            field, operator = match.group(1), match.group(2)
            if operator not in FILTER_OPERATORS:
                raise FilterValidationError(f"Unknown filter operator '{operator}' on '{field}'")
        else:
            field, operator = key, "eq"

        field = sanitize_field_name(field)
        values = _split_values(value)
        if not values:
            continue
        filters.extend(_conditions_for(field, operator, values))
    return filters


def combine_filters(
    dynamic_filters: Iterable[FilterCondition],
    date_filters: Iterable[FilterCondition],
) -> list[FilterCondition]:
    """Date filters first; duplicates are kept since AND makes them idempotent."""
    return [*date_filters, *dynamic_filters]
