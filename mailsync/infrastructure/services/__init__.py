"""Infrastructure services composed from adapters and repositories."""

from mailsync.infrastructure.services.account_adapter_service import (
    AccountAdapterService,
    AccountSnapshot,
)
from mailsync.infrastructure.services.sync_monitoring_service import (
    SyncMonitoringService,
    derive_health,
)
from mailsync.infrastructure.services.webhook_subscription_manager import (
    WebhookSubscriptionManager,
    run_periodic_sweep,
)

__all__ = [
    "AccountAdapterService",
    "AccountSnapshot",
    "SyncMonitoringService",
    "WebhookSubscriptionManager",
    "derive_health",
    "run_periodic_sweep",
]
