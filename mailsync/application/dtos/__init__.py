"""Application DTOs (dataclasses; no ORM types)."""

from mailsync.application.dtos.sync import (
    AccountErrorSummary,
    AccountMetrics,
    AccountVolume,
    ChangeSyncResult,
    FolderSyncResult,
    HealthIssue,
    HealthReport,
    RenewalOutcome,
    SubscriptionInfo,
    SweepResult,
    SyncJobSummary,
    SyncRequest,
    SyncResult,
    SystemMetrics,
)

__all__ = [
    "AccountErrorSummary",
    "AccountMetrics",
    "AccountVolume",
    "ChangeSyncResult",
    "FolderSyncResult",
    "HealthIssue",
    "HealthReport",
    "RenewalOutcome",
    "SubscriptionInfo",
    "SweepResult",
    "SyncJobSummary",
    "SyncRequest",
    "SyncResult",
    "SystemMetrics",
]
