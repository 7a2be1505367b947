"""Contract tests for the metric configuration registry."""
from __future__ import annotations

import logging

import pytest

from balance_backend.analytics.errors import MetricConfigurationError, QueryValidationError
from balance_backend.analytics.registry import (
    find_unresolvable_metrics,
    load_registry,
    registry_from_dict,
)


def _config(**overrides) -> dict:
    base = {
        "tables": ["transactions", "budget"],
        "base_metrics": [
            {"table": "transactions", "field": "sales_price", "aggregation": "sum", "alias": "sales"},
            {"table": "budget", "field": "sales_price", "aggregation": "sum", "alias": "budget"},
        ],
        "calculated_metrics": [],
    }
    base.update(overrides)
    return base


# ============================================================================
# Bundled configuration
# ============================================================================

class TestBundledRegistry:
    def test_response_fields_follow_registration_order(self, registry):
        fields = registry.all_response_field_names()
        assert fields[:3] == ["budget", "budget_last_year", "budget_vs_last_year"]
        assert fields[-5:] == registry.calculated_metric_names()
        assert len(fields) == 3 * len(registry.list_base_metrics()) + len(registry.list_calculated_metrics())

    def test_every_calculated_metric_resolves(self, registry):
        assert find_unresolvable_metrics(registry.config) == {}

    def test_field_pair_for_paired_and_unpaired_dimensions(self, registry):
        pair = registry.field_pair("seller_id")
        assert (pair.id_field, pair.name_field) == ("seller_id", "seller_name")
        assert registry.field_pair("month").name_field == "month"
        assert registry.has_name_field("seller_id")
        assert not registry.has_name_field("month")

    def test_filterable_columns_include_date_and_dimensions(self, registry):
        cols = registry.filterable_columns()
        assert cols[0] == "date"
        assert {"seller_id", "seller_name", "brand", "channel"} <= set(cols)
        assert len(cols) == len(set(cols))

    def test_budget_excludes_channel_filter(self, registry):
        assert registry.excluded_filter_fields("budget") == frozenset({"channel"})
        assert registry.excluded_filter_fields("transactions") == frozenset()

    def test_metrics_for_keeps_registration_order(self, registry):
        assert [m.alias for m in registry.metrics_for(["orders", "sales", "budget"])] == ["budget", "sales", "orders"]
        with pytest.raises(QueryValidationError):
            registry.metrics_for(["sales", "profit"])

    def test_order_by_fields_and_default(self, registry):
        assert registry.order_by_fields()[0] == "name"
        assert "sales_last_year" in registry.order_by_fields()
        assert registry.default_order_by == "sales"

    def test_load_is_cached_by_mtime(self):
        assert load_registry() is load_registry()


# ============================================================================
# Load-time validation
# ============================================================================

class TestRegistryValidation:
    def test_duplicate_alias_rejected(self):
        cfg = _config()
        cfg["base_metrics"].append(
            {"table": "budget", "field": "cost_price", "aggregation": "sum", "alias": "sales"}
        )
        with pytest.raises(MetricConfigurationError, match="Duplicate base metric aliases"):
            registry_from_dict(cfg)

    def test_undeclared_table_rejected(self):
        cfg = _config(tables=["transactions"])
        with pytest.raises(MetricConfigurationError, match="undeclared table"):
            registry_from_dict(cfg)

    def test_calculated_name_colliding_with_alias_rejected(self):
        cfg = _config(calculated_metrics=[
            {"name": "sales", "dependencies": ["budget"], "formula": "{budget}"},
        ])
        with pytest.raises(MetricConfigurationError, match="collide"):
            registry_from_dict(cfg)

    def test_unknown_aggregation_rejected(self):
        cfg = _config()
        cfg["base_metrics"][0]["aggregation"] = "median"
        with pytest.raises(MetricConfigurationError):
            registry_from_dict(cfg)

    def test_invalid_identifier_rejected(self):
        cfg = _config()
        cfg["base_metrics"][0]["field"] = "sales_price; DROP TABLE x"
        with pytest.raises(MetricConfigurationError):
            registry_from_dict(cfg)

    def test_unknown_default_order_by_rejected(self):
        with pytest.raises(MetricConfigurationError, match="default_order_by"):
            registry_from_dict(_config(default_order_by="nope"))

    def test_empty_yaml_sections_are_absent(self):
        reg = registry_from_dict(_config(calculated_metrics=None, dimensions=None))
        assert reg.list_calculated_metrics() == []
        assert reg.dimensions == []

    def test_missing_file_rejected(self, tmp_path):
        with pytest.raises(MetricConfigurationError, match="not found"):
            load_registry(tmp_path / "missing.yaml")


# ============================================================================
# Dependency diagnostics
# ============================================================================

class TestDependencyDiagnostics:
    def test_missing_dependency_is_logged_not_raised(self, caplog):
        cfg = _config(calculated_metrics=[
            {"name": "ratio", "dependencies": ["sales", "ghost"], "formula": "{sales} / {ghost}"},
        ])
        with caplog.at_level(logging.WARNING):
            reg = registry_from_dict(cfg)
        assert reg.calculated_metric_names() == ["ratio"]
        assert "unknown metrics ghost" in caplog.text

    def test_cycle_is_logged(self, caplog):
        cfg = _config(calculated_metrics=[
            {"name": "a", "dependencies": ["b"], "formula": "{b}"},
            {"name": "b", "dependencies": ["a"], "formula": "{a}"},
        ])
        with caplog.at_level(logging.WARNING):
            registry_from_dict(cfg)
        assert find_unresolvable_metrics(registry_from_dict(cfg).config) == {"a": ["b"], "b": ["a"]}
        assert "circular" in caplog.text

    def test_last_year_dependencies_are_known(self, caplog):
        cfg = _config(calculated_metrics=[
            {"name": "growth", "dependencies": ["sales", "sales_last_year"],
             "formula": "{sales} - {sales_last_year}"},
        ])
        with caplog.at_level(logging.WARNING):
            reg = registry_from_dict(cfg)
        assert find_unresolvable_metrics(reg.config) == {}
        assert caplog.text == ""

    def test_yaml_file_round_trip(self, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text(
            "tables: [transactions]\n"
            "base_metrics:\n"
            "  - {table: transactions, field: qty, aggregation: count, alias: lines}\n"
            "calculated_metrics:\n",
            encoding="utf-8",
        )
        reg = load_registry(path)
        assert reg.all_response_field_names() == ["lines", "lines_last_year", "lines_vs_last_year"]
        assert reg.default_order_by == "lines"
