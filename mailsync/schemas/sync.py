"""Sync trigger and sync-status schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from mailsync.domain.enums import SyncMode


class SyncTriggerRequest(BaseModel):
    """Body for POST /accounts/{id}/sync."""

    sync_mode: SyncMode = Field(default=SyncMode.INCREMENTAL)


class SyncAcceptedResponse(BaseModel):
    """Response for POST /accounts/{id}/sync (202 Accepted)."""

    detail: str = "Sync submitted"
    account_id: str
    sync_mode: SyncMode


class SyncStatusResponse(BaseModel):
    """Response for GET /accounts/{id}/sync-status."""

    account_id: str
    status: str
    sync_status: str
    sync_progress: int
    last_sync_at: datetime | None = None
    last_successful_sync_at: datetime | None = None
    last_sync_error: str | None = None
    is_running: bool = False
