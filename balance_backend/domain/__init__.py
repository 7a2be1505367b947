"""Domain layer for the balance analytics backend."""
from .types import ErrorCode, HealthStatusType, UNDETERMINED_LABEL

__all__ = ["ErrorCode", "HealthStatusType", "UNDETERMINED_LABEL"]
