"""Domain enumerations for the sync engine."""

from enum import Enum


class ProviderFamily(str, Enum):
    """Provider families the adapter registry can construct.

    DELTA_QUERY is Microsoft Graph, REST_HISTORY is Gmail, LEGACY_IMAP covers
    username/password IMAP servers and AGGREGATOR is a third-party
    aggregation API for mailboxes with no first-party adapter.
    """

    DELTA_QUERY = "delta_query"
    REST_HISTORY = "rest_history"
    LEGACY_IMAP = "legacy_imap"
    AGGREGATOR = "aggregator"

    @classmethod
    def values(cls) -> list[str]:
        return [family.value for family in cls]


class FolderType(str, Enum):
    """Canonical folder type every provider folder name is mapped into."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    SPAM = "spam"
    ARCHIVE = "archive"
    OUTBOX = "outbox"
    CUSTOM = "custom"


class AccountStatus(str, Enum):
    """Account lifecycle status. ERROR means re-authorization is needed."""

    ACTIVE = "active"
    ERROR = "error"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncJobStatus(str, Enum):
    """Status of one orchestrator attempt (sync_job row)."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMode(str, Enum):
    INITIAL = "initial"
    INCREMENTAL = "incremental"


class SyncTrigger(str, Enum):
    """What caused a sync request to be submitted."""

    SCHEDULE = "schedule"
    MANUAL = "manual"
    WEBHOOK = "webhook"
    INITIAL_CONNECT = "initial_connect"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class ErrorKind(str, Enum):
    """Coarse classification of a sync failure (drives status and retry)."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    PROVIDER = "provider"
    INVALID_DATA = "invalid_data"
    UNKNOWN = "unknown"
