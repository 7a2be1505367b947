"""Config-driven year-over-year balance analytics engine."""
from .errors import (
    AnalyticsError,
    MetricConfigurationError,
    QueryValidationError,
    FilterValidationError,
    AnalyticsCompilationError,
    AnalyticsExecutionError,
)
from .models import (
    BaseMetric,
    CalculatedMetric,
    MetricsConfig,
    FilterCondition,
    FilterOperator,
    Aggregation,
    OrderDirection,
    DimensionFieldPair,
    CompiledQuery,
)
from .registry import MetricRegistry, load_registry, registry_from_dict, find_unresolvable_metrics
from .filters import (
    parse_query_params_to_filters,
    parse_dynamic_filters,
    combine_filters,
    split_request_params,
    shift_date_filters,
)
from .metric_calculator import MetricCalculator
from .column_discovery import ColumnDiscoveryService
from .query_builder import AnalyticsQueryBuilder
from .response_builder import build_dynamic_response, build_dynamic_response_array
from .schema import (
    ListMetaModel,
    build_balance_response_model,
    build_list_item_model,
    build_list_response_model,
    build_metrics_model,
    generate_metrics_schema,
)

__all__ = [
    "AnalyticsError",
    "MetricConfigurationError",
    "QueryValidationError",
    "FilterValidationError",
    "AnalyticsCompilationError",
    "AnalyticsExecutionError",
    "BaseMetric",
    "CalculatedMetric",
    "MetricsConfig",
    "FilterCondition",
    "FilterOperator",
    "Aggregation",
    "OrderDirection",
    "DimensionFieldPair",
    "CompiledQuery",
    "MetricRegistry",
    "load_registry",
    "registry_from_dict",
    "find_unresolvable_metrics",
    "parse_query_params_to_filters",
    "parse_dynamic_filters",
    "combine_filters",
    "split_request_params",
    "shift_date_filters",
    "MetricCalculator",
    "ColumnDiscoveryService",
    "AnalyticsQueryBuilder",
    "build_dynamic_response",
    "build_dynamic_response_array",
    "generate_metrics_schema",
    "build_metrics_model",
    "build_list_item_model",
    "build_balance_response_model",
    "build_list_response_model",
    "ListMetaModel",
]
