"""
Balance sheet service: all configured metrics for one period, ungrouped.
"""
from __future__ import annotations

import logging
from typing import Sequence

from ..analytics.models import FilterCondition
from ..analytics.query_builder import AnalyticsQueryBuilder
from ..analytics.response_builder import build_dynamic_response

logger = logging.getLogger(__name__)


class BalanceService:
    def __init__(self, builder: AnalyticsQueryBuilder) -> None:
        self._builder = builder

    async def get_balance_sheet(self, filters: Sequence[FilterCondition]) -> dict[str, float | int]:
        registry = self._builder.registry
        row = await self._builder.build_multi_table_yoy_query(
            metrics=registry.list_base_metrics(),
            current_period_filters=filters,
        )
        return build_dynamic_response(row, registry)
