"""Resolve calculated metrics into SELECT-list expressions."""
from __future__ import annotations

import logging
from typing import Collection, Mapping, Sequence

from .models import BaseMetric
from .registry import LAST_YEAR_SUFFIX, MetricRegistry

logger = logging.getLogger(__name__)

MetricsByTable = Mapping[str, Sequence[BaseMetric]]


class MetricCalculator:
    """Emit ``<formula> AS <name>`` fragments for every resolvable calculated metric.

    Formulas are trusted configuration. Placeholders are replaced literally and
    the formula itself is responsible for guarding division by zero.
    """

    def __init__(self, registry: MetricRegistry) -> None:
        self._registry = registry

    def build_alias_to_cte_map(
        self,
        metrics_by_table: MetricsByTable,
        skipped_tables: Collection[str] | None = None,
    ) -> dict[str, str]:
        """Map each base alias and its ``_last_year`` variant to a SQL reference.

        Metrics of skipped tables map to their bare output names, which the
        query exposes as literal zeros.
        """
        skipped = skipped_tables or ()
        refs: dict[str, str] = {}
        for table, metrics in metrics_by_table.items():
            for m in metrics:
                if table in skipped:
                    refs[m.alias] = m.alias
                    refs[f"{m.alias}{LAST_YEAR_SUFFIX}"] = f"{m.alias}_ly"
                else:
                    refs[m.alias] = f"{table}_current.{m.alias}"
                    refs[f"{m.alias}{LAST_YEAR_SUFFIX}"] = f"{table}_previous.{m.alias}_ly"
        return refs

    def resolve_calculated_metrics(
        self,
        metrics_by_table: MetricsByTable,
        skipped_tables: Collection[str] | None = None,
    ) -> dict[str, str]:
        """Map each resolvable calculated metric to its substituted expression.

        Keys are in resolution order. Metrics whose dependencies never become
        available are left out.
        """
        refs = self.build_alias_to_cte_map(metrics_by_table, skipped_tables)
        resolved: dict[str, str] = {}

        # Fixed point: each pass adds every metric whose dependencies are now
        # available, in declaration order, until a pass adds nothing.
        progressed = True
        while progressed:
            progressed = False
            for calc in self._registry.list_calculated_metrics():
                if calc.name in resolved:
                    continue
                if not all(dep in refs or dep in resolved for dep in calc.dependencies):
                    continue

                formula = calc.formula
                for dep in calc.dependencies:
                    # Calculated dependencies are inlined as their own expression.
                    reference = refs[dep] if dep in refs else f"({resolved[dep]})"
                    formula = formula.replace("{" + dep + "}", reference)

                resolved[calc.name] = formula
                progressed = True

        omitted = [
            c.name for c in self._registry.list_calculated_metrics() if c.name not in resolved
        ]
        if omitted:
            logger.debug("Omitting unresolvable calculated metrics: %s", ", ".join(omitted))
        return resolved

    def calculated_metric_selects(
        self,
        metrics_by_table: MetricsByTable,
        skipped_tables: Collection[str] | None = None,
    ) -> list[str]:
        resolved = self.resolve_calculated_metrics(metrics_by_table, skipped_tables)
        return [f"{expr} AS {name}" for name, expr in resolved.items()]

    def add_calculated_metrics(
        self,
        selects: list[str],
        metrics_by_table: MetricsByTable,
        skipped_tables: Collection[str] | None = None,
    ) -> None:
        """Append calculated metric expressions to ``selects`` in place."""
        selects.extend(self.calculated_metric_selects(metrics_by_table, skipped_tables))
