"""
Health check service.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from ..domain import HealthStatusType
from ..repositories import StoreClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceHealth:
    status: HealthStatusType
    message: str | None = None
    latency_ms: int | None = None


@dataclass(frozen=True)
class HealthReport:
    backend: ServiceHealth
    store: ServiceHealth


class HealthService:
    """Service for checking health of all system components."""

    def __init__(self, client: StoreClient) -> None:
        self._client = client

    async def check_all(self) -> HealthReport:
        store = await self._check_store()
        return HealthReport(ServiceHealth("ok", "Backend is running"), store)

    async def _check_store(self) -> ServiceHealth:
        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._client.query, "SELECT 1 AS ok", [])
        except Exception as exc:
            logger.warning("Store health check failed: %s", exc)
            return ServiceHealth("error", str(exc))
        latency = int((time.perf_counter() - start) * 1000)
        return ServiceHealth("ok", "Store reachable", latency)
