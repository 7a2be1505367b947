"""
Grouped balance list with pagination metadata.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

from ..analytics.models import FilterCondition
from ..analytics.query_builder import AnalyticsQueryBuilder
from ..analytics.response_builder import build_dynamic_response_array
from ..domain import UNDETERMINED_LABEL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListMeta:
    group_by: str
    total: int
    count: int
    page: int
    limit: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupBy": self.group_by,
            "total": self.total,
            "count": self.count,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True)
class BalanceList:
    items: list[dict[str, Any]]
    meta: ListMeta


def _label(value: Any) -> str:
    text = "" if value is None else str(value)
    return UNDETERMINED_LABEL if text.strip() == "" else text


class ListService:
    def __init__(self, builder: AnalyticsQueryBuilder) -> None:
        self._builder = builder

    async def get_balance_list(
        self,
        filters: Sequence[FilterCondition],
        group_by: str,
        page: int = 1,
        limit: int = 50,
        order_by: str | None = None,
        order_direction: str = "desc",
    ) -> BalanceList:
        registry = self._builder.registry
        offset = (page - 1) * limit
        rows = await self._builder.build_grouped_multi_table_yoy_query(
            metrics=registry.list_base_metrics(),
            current_period_filters=filters,
            group_by=group_by,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_direction=order_direction,
        )

        if rows and rows[0].get("_total_count") is not None:
            total = int(rows[0]["_total_count"])
        else:
            total = len(rows)

        metrics = build_dynamic_response_array(rows, registry)
        items = [
            {"id": _label(row.get("id")), "name": _label(row.get("name")), **values}
            for row, values in zip(rows, metrics)
        ]
        meta = ListMeta(
            group_by=group_by,
            total=total,
            count=len(items),
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )
        logger.debug("Grouped list by %s: page %d of %d", group_by, page, meta.total_pages)
        return BalanceList(items=items, meta=meta)
