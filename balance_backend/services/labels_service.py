"""
Distinct column values for filter suggestion lists.
"""
from __future__ import annotations

from ..analytics.filters import parse_query_params_to_filters
from ..analytics.query_builder import AnalyticsQueryBuilder


class LabelsService:
    def __init__(self, builder: AnalyticsQueryBuilder) -> None:
        self._builder = builder

    async def get_labels(
        self,
        column: str,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[str]:
        filters = parse_query_params_to_filters({"startDate": start_date, "endDate": end_date})
        return await self._builder.build_distinct_values_query(
            table=self._builder.registry.primary_table,
            column=column,
            filters=filters,
            limit=limit,
            offset=offset,
        )
