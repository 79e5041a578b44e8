"""DTOs for sync, webhook and monitoring use cases (no dependency on ORM)."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import HealthStatus, SyncMode, SyncTrigger


@dataclass(frozen=True)
class SyncRequest:
    """One account sync as submitted to the runner."""

    account_id: str
    sync_mode: SyncMode = SyncMode.INCREMENTAL
    trigger: SyncTrigger = SyncTrigger.SCHEDULE
    user_id: str | None = None
    provider_family: str | None = None


@dataclass
class FolderSyncResult:
    folder_id: str
    external_id: str
    emails_synced: int = 0
    emails_failed: int = 0
    pages: int = 0


@dataclass
class ChangeSyncResult:
    """Outcome of one change-feed pass.

    needs_full_sync: there was no account cursor to start from.
    cursor_invalid: the provider rejected the cursor; counts are zero.
    """

    added: int = 0
    deleted: int = 0
    flags_updated: int = 0
    skipped: int = 0
    failed: int = 0
    new_cursor: str | None = None
    needs_full_sync: bool = False
    cursor_invalid: bool = False

    @property
    def emails_synced(self) -> int:
        return self.added + self.flags_updated


@dataclass
class SyncResult:
    """Result of a successful orchestrator run."""

    account_id: str
    job_id: str
    sync_mode: SyncMode
    emails_synced: int
    folders_synced: int
    used_change_feed: bool = False
    folders: list[FolderSyncResult] = field(default_factory=list)


@dataclass(frozen=True)
class SubscriptionInfo:
    """Active push subscription after subscribe()."""

    subscription_id: str
    account_id: str
    resource: str
    expiration: datetime
    created: bool


@dataclass(frozen=True)
class RenewalOutcome:
    subscription_id: str
    renewed: bool
    expiration: datetime | None = None
    error: str | None = None


@dataclass
class SweepResult:
    renewed: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class AccountMetrics:
    account_id: str
    window_days: int
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    total_emails_synced: int
    average_sync_time_ms: float
    last_sync_duration_ms: float | None
    error_rate: float
    uptime: float
    last_successful_sync_at: datetime | None = None


@dataclass(frozen=True)
class HealthIssue:
    issue: str
    recommendation: str


@dataclass(frozen=True)
class HealthReport:
    account_id: str
    status: HealthStatus
    issues: list[str]
    recommendations: list[str]
    metrics: AccountMetrics


@dataclass(frozen=True)
class SyncJobSummary:
    job_id: str
    status: str
    sync_mode: str
    trigger: str
    attempt: int
    started_at: datetime | None
    completed_at: datetime | None
    emails_synced: int
    error: str | None


@dataclass(frozen=True)
class AccountVolume:
    account_id: str
    email_address: str
    email_count: int


@dataclass(frozen=True)
class AccountErrorSummary:
    account_id: str
    email_address: str
    error: str
    last_sync_at: datetime | None


@dataclass(frozen=True)
class SystemMetrics:
    total_accounts: int
    active_accounts: int
    error_accounts: int
    syncing_accounts: int
    total_emails: int
    emails_last_24h: int
    top_accounts: list[AccountVolume]
    recent_errors: list[AccountErrorSummary]
