"""
Core type definitions and constants.
"""
from __future__ import annotations

from typing import Literal

HealthStatusType = Literal["ok", "error", "unavailable"]

UNDETERMINED_LABEL = "Undetermined"


class ErrorCode:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FILTER = "INVALID_FILTER"
    QUERY_FAILED = "QUERY_FAILED"
