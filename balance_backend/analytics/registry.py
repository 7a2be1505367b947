"""
Metric configuration registry.

Loads the declarative metric set from ``metrics.yaml`` and exposes it to the
rest of the system. Nothing downstream names a metric directly: queries,
responses and API schemas are all derived from what this module returns.
"""
from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .errors import MetricConfigurationError, QueryValidationError
from .models import (
    BaseMetric,
    CalculatedMetric,
    DimensionFieldPair,
    MetricsConfig,
    is_identifier,
)

logger = logging.getLogger(__name__)

LAST_YEAR_SUFFIX = "_last_year"
VS_LAST_YEAR_SUFFIX = "_vs_last_year"
DATE_FIELD = "date"


class MetricRegistry:
    """Read-only view over a validated :class:`MetricsConfig`."""

    def __init__(self, config: MetricsConfig) -> None:
        _validate_config(config)
        self._config = config

    @property
    def config(self) -> MetricsConfig:
        return self._config

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def list_base_metrics(self) -> list[BaseMetric]:
        return list(self._config.base_metrics)

    def list_calculated_metrics(self) -> list[CalculatedMetric]:
        return list(self._config.calculated_metrics)

    def base_metric_aliases(self) -> list[str]:
        return [m.alias for m in self._config.base_metrics]

    def calculated_metric_names(self) -> list[str]:
        return [m.name for m in self._config.calculated_metrics]

    def metrics_for(self, aliases: Iterable[str]) -> list[BaseMetric]:
        """Base metrics for ``aliases``, in registration order."""
        wanted = set(aliases)
        unknown = wanted - set(self.base_metric_aliases())
        if unknown:
            raise QueryValidationError(f"Unknown metric alias(es): {', '.join(sorted(unknown))}")
        return [m for m in self._config.base_metrics if m.alias in wanted]

    def all_response_field_names(self) -> list[str]:
        """Every field of a normalized response, in registration order."""
        fields: list[str] = []
        for alias in self.base_metric_aliases():
            fields.append(alias)
            fields.append(f"{alias}{LAST_YEAR_SUFFIX}")
            fields.append(f"{alias}{VS_LAST_YEAR_SUFFIX}")
        fields.extend(self.calculated_metric_names())
        return fields

    # ------------------------------------------------------------------
    # Tables and dimensions
    # ------------------------------------------------------------------

    @property
    def tables(self) -> list[str]:
        return list(self._config.tables)

    @property
    def primary_table(self) -> str:
        return self._config.primary_table

    @property
    def dimensions(self) -> list[str]:
        return list(self._config.dimensions)

    def field_pair(self, group_by: str) -> DimensionFieldPair:
        """Id/name columns for a grouping dimension; the id doubles as name when unpaired."""
        return DimensionFieldPair(
            id_field=group_by,
            name_field=self._config.dimension_names.get(group_by, group_by),
        )

    def has_name_field(self, group_by: str) -> bool:
        return group_by in self._config.dimension_names

    def filterable_columns(self) -> list[str]:
        ordered = [
            DATE_FIELD,
            *self._config.dimensions,
            *self._config.dimension_names.values(),
            *self._config.filterable_columns,
        ]
        return list(dict.fromkeys(ordered))

    def excluded_filter_fields(self, table: str) -> frozenset[str]:
        return frozenset(self._config.table_filter_exclusions.get(table, ()))

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def order_by_fields(self) -> list[str]:
        return ["name", *self.all_response_field_names()]

    @property
    def default_order_by(self) -> str:
        if self._config.default_order_by:
            return self._config.default_order_by
        aliases = self.base_metric_aliases()
        return aliases[0] if aliases else "name"


# ============================================================================
# Validation
# ============================================================================

def _validate_config(config: MetricsConfig) -> None:
    tables = set(config.tables)

    for table in config.tables:
        if not is_identifier(table):
            raise MetricConfigurationError(f"Invalid table name: {table!r}")

    if config.primary_table not in tables:
        raise MetricConfigurationError(
            f"primary_table '{config.primary_table}' is not a declared table"
        )

    for metric in config.base_metrics:
        if metric.table not in tables:
            raise MetricConfigurationError(
                f"Base metric '{metric.alias}' targets undeclared table '{metric.table}'"
            )

    alias_counts = Counter(m.alias for m in config.base_metrics)
    duplicates = sorted(a for a, n in alias_counts.items() if n > 1)
    if duplicates:
        raise MetricConfigurationError(f"Duplicate base metric aliases: {', '.join(duplicates)}")

    name_counts = Counter(m.name for m in config.calculated_metrics)
    duplicates = sorted(n for n, c in name_counts.items() if c > 1)
    if duplicates:
        raise MetricConfigurationError(f"Duplicate calculated metric names: {', '.join(duplicates)}")

    collisions = sorted(set(alias_counts) & set(name_counts))
    if collisions:
        raise MetricConfigurationError(
            f"Calculated metric names collide with base aliases: {', '.join(collisions)}"
        )

    identifiers = [
        *config.dimensions,
        *config.dimension_names.keys(),
        *config.dimension_names.values(),
        *config.filterable_columns,
    ]
    for table, fields in config.table_filter_exclusions.items():
        identifiers.append(table)
        identifiers.extend(fields)
    for ident in identifiers:
        if not is_identifier(ident):
            raise MetricConfigurationError(f"Invalid column name in configuration: {ident!r}")

    if config.default_order_by is not None:
        allowed = {"name", *alias_counts, *name_counts}
        allowed.update(f"{a}{LAST_YEAR_SUFFIX}" for a in alias_counts)
        allowed.update(f"{a}{VS_LAST_YEAR_SUFFIX}" for a in alias_counts)
        if config.default_order_by not in allowed:
            raise MetricConfigurationError(
                f"default_order_by '{config.default_order_by}' is not a response field"
            )


def find_unresolvable_metrics(config: MetricsConfig) -> dict[str, list[str]]:
    """Return calculated metrics that can never resolve, mapped to the blocking dependencies.

    Uses the same fixed-point resolution as query time, with every base metric
    available. A metric ends up here either because a dependency names nothing
    in the configuration or because it sits on a dependency cycle.
    """
    available: set[str] = set()
    for m in config.base_metrics:
        available.add(m.alias)
        available.add(f"{m.alias}{LAST_YEAR_SUFFIX}")

    resolved: set[str] = set()
    progressed = True
    while progressed:
        progressed = False
        for calc in config.calculated_metrics:
            if calc.name in resolved:
                continue
            if all(dep in available or dep in resolved for dep in calc.dependencies):
                resolved.add(calc.name)
                progressed = True

    blocked: dict[str, list[str]] = {}
    for calc in config.calculated_metrics:
        if calc.name in resolved:
            continue
        blocked[calc.name] = [
            dep for dep in calc.dependencies if dep not in available and dep not in resolved
        ]
    return blocked


def _log_dependency_diagnostics(config: MetricsConfig) -> None:
    known = {m.name for m in config.calculated_metrics}
    for m in config.base_metrics:
        known.update({m.alias, f"{m.alias}{LAST_YEAR_SUFFIX}"})
    for name, deps in find_unresolvable_metrics(config).items():
        missing = [d for d in deps if d not in known]
        if missing:
            logger.warning(
                "Calculated metric '%s' depends on unknown metrics %s and will be omitted",
                name, ", ".join(missing),
            )
        else:
            logger.warning(
                "Calculated metric '%s' waits on unresolvable metrics %s "
                "(circular or transitively missing) and will be omitted",
                name, ", ".join(deps),
            )


# ============================================================================
# Loading
# ============================================================================

_REGISTRY_CACHE: dict[Path, tuple[float, MetricRegistry]] = {}


def default_config_path() -> Path:
    return Path(__file__).resolve().parent.parent / "metrics.yaml"


def registry_from_dict(raw: dict) -> MetricRegistry:
    try:
        config = MetricsConfig(**raw)
    except ValidationError as exc:
        raise MetricConfigurationError(f"Invalid metric configuration: {exc}") from exc
    registry = MetricRegistry(config)
    _log_dependency_diagnostics(config)
    return registry


def load_registry(path: str | Path | None = None, force_reload: bool = False) -> MetricRegistry:
    """
    Load the metric registry from YAML.

    Caches per file and reloads only when the file's mtime changes.

    Raises:
        MetricConfigurationError: missing file or malformed declarations
    """
    config_path = Path(path) if path else default_config_path()
    if not config_path.exists():
        raise MetricConfigurationError(f"Metric configuration not found: {config_path}")

    mtime = config_path.stat().st_mtime
    cached = _REGISTRY_CACHE.get(config_path)
    if not force_reload and cached is not None and cached[0] == mtime:
        return cached[1]

    with open(config_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    registry = registry_from_dict(raw)
    _REGISTRY_CACHE[config_path] = (mtime, registry)
    logger.info(
        "Loaded %d base and %d calculated metrics from %s",
        len(registry.list_base_metrics()), len(registry.list_calculated_metrics()), config_path.name,
    )
    return registry
