from __future__ import annotations


class AnalyticsError(Exception):
    """Base error class for balance analytics."""


class MetricConfigurationError(AnalyticsError):
    """Raised at load time when the metric configuration is malformed."""


class QueryValidationError(AnalyticsError):
    """Raised when grouping, ordering or pagination parameters are rejected."""


class FilterValidationError(QueryValidationError):
    """Raised when a filter field, operator or value is rejected."""


class AnalyticsCompilationError(AnalyticsError):
    """Raised when a validated request cannot be compiled into safe SQL."""


class AnalyticsExecutionError(AnalyticsError):
    """Raised when the analytical store fails to execute a query."""
