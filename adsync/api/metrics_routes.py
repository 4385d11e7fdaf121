"""ADSYNC — Metrics API Routes."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from adsync.analyzer.orchestrator import FetchOrchestrator
from adsync.core.errors import (
    EngineError,
    PlatformAuthError,
    PlatformError,
    StoreError,
    ValidationError,
)
from adsync.core.logging import get_logger
from adsync.core.periods import DateRange, Granularity, period_containing
from adsync.models.metric_models import AggregatedResult, Platform

logger = get_logger("api.metrics")

router = APIRouter(prefix="/metrics", tags=["Metrics"])


def get_orchestrator(request: Request) -> FetchOrchestrator:
    """Dependency: the orchestrator built during app startup."""
    return request.app.state.orchestrator


def _status_for(e: EngineError) -> int:
    if isinstance(e, ValidationError):
        return 422
    if isinstance(e, PlatformAuthError):
        return 401
    if isinstance(e, PlatformError):
        return 502
    if isinstance(e, StoreError):
        return 503
    return 500


def _raise_http(e: EngineError, context: str):
    status = _status_for(e)
    log = logger.warning if status < 500 else logger.error
    log(f"{context} failed ({e.code}): {e}")
    raise HTTPException(status_code=status, detail={"code": e.code, "message": str(e)})


# ── Endpoints ──


@router.get("/{tenant_id}/{platform}", response_model=AggregatedResult)
async def get_metrics(
    tenant_id: str,
    platform: Platform,
    start_date: date = Query(..., description="Inclusive range start, YYYY-MM-DD"),
    end_date: date = Query(..., description="Inclusive range end, YYYY-MM-DD"),
    force_fresh: bool = Query(False, description="Bypass a fresh cache snapshot"),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Metrics for any date range.

    Whole months and ISO weeks are served from the cache or the summary
    store; other ranges are fetched live. The response says where the data
    came from and whether it may be delayed.
    """
    try:
        date_range = DateRange.parse(start_date, end_date)
        return await orchestrator.fetch_metrics(
            tenant_id, platform, date_range, force_fresh=force_fresh
        )
    except EngineError as e:
        _raise_http(e, f"Metrics for {tenant_id}/{platform.value}")


@router.get("/{tenant_id}/{platform}/current", response_model=AggregatedResult)
async def get_current_metrics(
    tenant_id: str,
    platform: Platform,
    granularity: Granularity = Query(Granularity.MONTH),
    force_fresh: bool = Query(False),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Metrics for the month or ISO week containing today."""
    period = period_containing(orchestrator.now().date(), granularity)
    try:
        return await orchestrator.fetch_metrics(
            tenant_id, platform, period.date_range, force_fresh=force_fresh
        )
    except EngineError as e:
        _raise_http(e, f"Current {granularity.value} for {tenant_id}/{platform.value}")
