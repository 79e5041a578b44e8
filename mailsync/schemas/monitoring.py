"""Monitoring API schemas (mirrors of the monitoring DTOs)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from mailsync.domain.enums import HealthStatus


class AccountMetricsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    window_days: int
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    total_emails_synced: int
    average_sync_time_ms: float
    last_sync_duration_ms: float | None = None
    error_rate: float
    uptime: float
    last_successful_sync_at: datetime | None = None


class HealthReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    status: HealthStatus
    issues: list[str]
    recommendations: list[str]
    metrics: AccountMetricsResponse


class AccountVolumeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    email_address: str
    email_count: int


class AccountErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: str
    email_address: str
    error: str
    last_sync_at: datetime | None = None


class SystemMetricsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_accounts: int
    active_accounts: int
    error_accounts: int
    syncing_accounts: int
    total_emails: int
    emails_last_24h: int
    top_accounts: list[AccountVolumeResponse]
    recent_errors: list[AccountErrorResponse]


class SyncJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    status: str
    sync_mode: str
    trigger: str
    attempt: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    emails_synced: int
    error: str | None = None
