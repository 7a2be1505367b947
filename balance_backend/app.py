"""
FastAPI application for the balance analytics backend.

Routes validate request parameters and delegate to the services layer.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Iterator, Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .analytics import (
    AnalyticsError,
    AnalyticsExecutionError,
    AnalyticsQueryBuilder,
    ColumnDiscoveryService,
    FilterValidationError,
    MetricRegistry,
    QueryValidationError,
    build_balance_response_model,
    build_list_response_model,
    combine_filters,
    generate_metrics_schema,
    load_registry,
    parse_dynamic_filters,
    parse_query_params_to_filters,
    split_request_params,
)
from .analytics.filters import sanitize_date_string
from .analytics.models import FilterCondition
from .analytics.validator import (
    validate_filters,
    validate_group_by,
    validate_label_column,
    validate_order_direction,
    validate_pagination,
)
from .config import get_settings
from .domain import ErrorCode
from .repositories import SQLiteStoreClient, StoreClient
from .services import BalanceService, HealthService, LabelsService, ListService

settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Balance Analytics", version="1.0.0", docs_url="/docs", redoc_url="/redoc", openapi_url="/openapi.json")
app.add_middleware(CORSMiddleware, allow_origins=list(settings.cors_origins), allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthStatus(BaseModel):
    status: Literal["ok", "error", "unavailable"]
    message: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    backend: HealthStatus
    store: HealthStatus


# ============================================================================
# Dependencies
# ============================================================================

@lru_cache(maxsize=1)
def get_store_client() -> StoreClient:
    return SQLiteStoreClient.connect(get_settings().store_db_path)


@lru_cache(maxsize=1)
def get_registry() -> MetricRegistry:
    return load_registry(get_settings().metrics_config_path)


@lru_cache(maxsize=1)
def get_column_discovery() -> ColumnDiscoveryService:
    # Shared so the column cache outlives a single request.
    return ColumnDiscoveryService(get_store_client(), ttl_seconds=get_settings().column_cache_ttl_s)


def get_builder(
    client: StoreClient = Depends(get_store_client),
    registry: MetricRegistry = Depends(get_registry),
    column_discovery: ColumnDiscoveryService = Depends(get_column_discovery),
) -> AnalyticsQueryBuilder:
    s = get_settings()
    return AnalyticsQueryBuilder(
        client,
        registry,
        table_prefix=s.table_prefix,
        column_discovery=column_discovery,
        max_distinct_values=s.max_distinct_values,
    )


# Envelope models follow the metric configuration loaded at import.
BalanceResponse = build_balance_response_model(get_registry())
BalanceListResponse = build_list_response_model(get_registry())


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except FilterValidationError as e:
        raise HTTPException(400, {"code": ErrorCode.INVALID_FILTER, "message": str(e)})
    except QueryValidationError as e:
        raise HTTPException(400, {"code": ErrorCode.VALIDATION_ERROR, "message": str(e)})
    except AnalyticsExecutionError:
        logger.exception("Analytics query failed")
        raise HTTPException(500, {"code": ErrorCode.QUERY_FAILED, "message": "Analytics query failed"})
    except AnalyticsError as e:
        logger.exception("Analytics error")
        raise HTTPException(500, {"code": ErrorCode.QUERY_FAILED, "message": str(e)})


def _request_filters(request: Request, registry: MetricRegistry) -> list[FilterCondition]:
    """Two-phase parse: reserved params first, the remainder as dynamic filters."""
    raw: dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key in raw:
            existing = raw[key]
            raw[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            raw[key] = value

    known, dynamic = split_request_params(raw)
    dates: dict[str, str] = {}
    for key in ("startDate", "endDate"):
        value = known.get(key)
        if isinstance(value, list):
            raise FilterValidationError(f"{key} must be a single value")
        if value:
            dates[key] = sanitize_date_string(value)

    filters = combine_filters(parse_dynamic_filters(dynamic), parse_query_params_to_filters(dates))
    validate_filters(filters, registry)
    return filters


@app.on_event("startup")
async def startup() -> None:
    registry = get_registry()
    logger.info("Balance analytics ready: %d response fields", len(registry.all_response_field_names()))


# ============================================================================
# Balance Routes
# ============================================================================

@app.get("/api/balance", response_model=BalanceResponse)
async def get_balance(request: Request, builder: AnalyticsQueryBuilder = Depends(get_builder)) -> dict:
    with _translate_errors():
        filters = _request_filters(request, builder.registry)
        data = await BalanceService(builder).get_balance_sheet(filters)
    return {"data": data}


@app.get("/api/list", response_model=BalanceListResponse)
async def get_list(
    request: Request,
    group_by: str | None = Query(None, alias="groupBy"),
    page: int = Query(1),
    limit: int | None = Query(None),
    order_by: str | None = Query(None, alias="orderBy"),
    order_direction: str = Query("desc", alias="orderDirection"),
    builder: AnalyticsQueryBuilder = Depends(get_builder),
) -> dict:
    s = get_settings()
    with _translate_errors():
        registry = builder.registry
        dimension = validate_group_by(group_by, registry)
        direction = validate_order_direction(order_direction)
        page_size = s.list_default_limit if limit is None else limit
        validate_pagination(page, page_size, min_limit=s.list_min_limit, max_limit=s.list_max_limit)
        filters = _request_filters(request, registry)
        result = await ListService(builder).get_balance_list(
            filters,
            dimension,
            page=page,
            limit=page_size,
            order_by=order_by,
            order_direction=direction,
        )
    return {"data": result.items, "meta": result.meta.to_dict()}


@app.get("/api/labels")
async def get_labels(
    column: str | None = Query(None),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    limit: int = Query(100),
    offset: int = Query(0),
    builder: AnalyticsQueryBuilder = Depends(get_builder),
) -> dict:
    s = get_settings()
    with _translate_errors():
        col = validate_label_column(column, builder.registry)
        if limit < 1 or limit > s.labels_max_limit:
            raise QueryValidationError(f"limit must be between 1 and {s.labels_max_limit}")
        if offset < 0:
            raise QueryValidationError("offset must be >= 0")
        values = await LabelsService(builder).get_labels(
            col,
            start_date=sanitize_date_string(start_date) if start_date else None,
            end_date=sanitize_date_string(end_date) if end_date else None,
            limit=limit,
            offset=offset,
        )
    return {"data": values}


@app.get("/api/metrics/schema")
async def get_metrics_schema(registry: MetricRegistry = Depends(get_registry)) -> dict:
    return {
        "data": {
            "type": "object",
            "properties": generate_metrics_schema(registry),
            "groupByDimensions": registry.dimensions,
            "orderByFields": registry.order_by_fields(),
            "filterableColumns": registry.filterable_columns(),
        }
    }


# ============================================================================
# Health Routes
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
async def health_check(client: StoreClient = Depends(get_store_client)) -> HealthResponse:
    r = await HealthService(client).check_all()
    return HealthResponse(backend=HealthStatus(status=r.backend.status, message=r.backend.message, latency_ms=r.backend.latency_ms),
                          store=HealthStatus(status=r.store.status, message=r.store.message, latency_ms=r.store.latency_ms))


@app.get("/")
async def root() -> dict:
    return {"service": "Balance Analytics", "docs": "/docs"}
