"""Monitoring API: per-account metrics and health, sync history, system totals."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from mailsync.api.v1.dependencies import get_monitoring_service
from mailsync.infrastructure.services import SyncMonitoringService
from mailsync.schemas.monitoring import (
    AccountMetricsResponse,
    HealthReportResponse,
    SyncJobResponse,
    SystemMetricsResponse,
)

router = APIRouter()

Monitoring = Annotated[SyncMonitoringService, Depends(get_monitoring_service)]


@router.get("/accounts/{account_id}/metrics", response_model=AccountMetricsResponse)
async def account_metrics(
    account_id: str,
    monitoring: Monitoring,
    window_days: int = Query(30, ge=1, le=365),
) -> AccountMetricsResponse:
    metrics = await monitoring.account_metrics(account_id, window_days)
    return AccountMetricsResponse.model_validate(metrics)


@router.get("/accounts/{account_id}/health", response_model=HealthReportResponse)
async def account_health(
    account_id: str,
    monitoring: Monitoring,
    window_days: int = Query(7, ge=1, le=90),
) -> HealthReportResponse:
    """Health status with issue/recommendation pairs over the trailing window."""
    report = await monitoring.health_report(account_id, window_days)
    return HealthReportResponse.model_validate(report)


@router.get("/accounts/{account_id}/sync-history", response_model=list[SyncJobResponse])
async def sync_history(
    account_id: str,
    monitoring: Monitoring,
    limit: int = Query(20, ge=1, le=200),
) -> list[SyncJobResponse]:
    jobs = await monitoring.sync_history(account_id, limit)
    return [SyncJobResponse.model_validate(job) for job in jobs]


@router.get("/system", response_model=SystemMetricsResponse)
async def system_metrics(
    monitoring: Monitoring,
    top_n: int = Query(5, ge=1, le=50),
    recent_errors: int = Query(10, ge=1, le=100),
) -> SystemMetricsResponse:
    metrics = await monitoring.system_metrics(top_n=top_n, recent_errors=recent_errors)
    return SystemMetricsResponse.model_validate(metrics)
