"""Tests for response normalization and registry-derived schemas."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from balance_backend.analytics.registry import registry_from_dict
from balance_backend.analytics.response_builder import (
    build_dynamic_response,
    build_dynamic_response_array,
)
from balance_backend.analytics.schema import (
    build_list_item_model,
    build_metrics_model,
    generate_metrics_schema,
)


# ============================================================================
# Normalization
# ============================================================================

class TestDynamicResponse:
    def test_empty_row_is_all_zero(self, registry):
        response = build_dynamic_response({}, registry)
        assert list(response) == registry.all_response_field_names()
        assert set(response.values()) == {0}

    def test_last_year_read_from_ly_column(self, registry):
        response = build_dynamic_response({"sales": 10, "sales_ly": 8, "sales_vs_last_year": 25.0}, registry)
        assert response["sales"] == 10
        assert response["sales_last_year"] == 8
        assert response["sales_vs_last_year"] == 25.0

    def test_last_year_fallback_name(self, registry):
        response = build_dynamic_response({"sales_last_year": 7}, registry)
        assert response["sales_last_year"] == 7

    def test_nulls_and_extra_keys(self, registry):
        response = build_dynamic_response(
            {"sales": None, "gross_margin_pct": "12.5", "_total_count": 3, "id": "S1"}, registry
        )
        assert response["sales"] == 0
        assert response["gross_margin_pct"] == 12.5
        assert "_total_count" not in response
        assert "id" not in response

    def test_array(self, registry):
        rows = build_dynamic_response_array([{"sales": 1}, {"sales": 2}], registry)
        assert [r["sales"] for r in rows] == [1, 2]

    def test_new_metric_needs_no_code_change(self):
        reg = registry_from_dict({
            "tables": ["returns"],
            "primary_table": "returns",
            "base_metrics": [{"table": "returns", "field": "qty", "aggregation": "count", "alias": "return_lines"}],
            "calculated_metrics": [
                {"name": "return_rate", "dependencies": ["return_lines"], "formula": "{return_lines} * 1.0"},
            ],
        })
        assert list(build_dynamic_response({}, reg)) == [
            "return_lines", "return_lines_last_year", "return_lines_vs_last_year", "return_rate",
        ]


# ============================================================================
# Schema generation
# ============================================================================

class TestSchemaGeneration:
    def test_schema_covers_every_field(self, registry):
        schema = generate_metrics_schema(registry)
        assert list(schema) == registry.all_response_field_names()
        assert all(prop["type"] == "number" for prop in schema.values())
        assert schema["gross_margin_pct"]["description"] == "Gross margin percentage"
        assert schema["sales_last_year"]["description"] == "Sales, same period last year"

    def test_metrics_model_defaults_to_zero(self, registry):
        model = build_metrics_model(registry)
        instance = model()
        assert instance.model_dump() == {name: 0 for name in registry.all_response_field_names()}

    def test_list_item_model(self, registry):
        model = build_list_item_model(registry)
        item = model(id="S1", name="Alice", sales=10)
        assert item.sales == 10
        with pytest.raises(ValidationError):
            model(sales="not a number")
