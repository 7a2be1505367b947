"""Services layer for the balance analytics backend."""
from .balance_service import BalanceService
from .list_service import ListService, BalanceList, ListMeta
from .labels_service import LabelsService
from .health_service import HealthService, HealthReport, ServiceHealth

__all__ = ["BalanceService", "ListService", "BalanceList", "ListMeta", "LabelsService",
           "HealthService", "HealthReport", "ServiceHealth"]
