"""Repositories: one per model, bound to a caller-owned AsyncSession."""

from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.infrastructure.persistence.repositories.email_folder_repo import (
    EmailFolderRepository,
)
from mailsync.infrastructure.persistence.repositories.email_message_repo import (
    EmailMessageRepository,
)
from mailsync.infrastructure.persistence.repositories.sync_job_repo import (
    SyncJobRepository,
)
from mailsync.infrastructure.persistence.repositories.webhook_subscription_repo import (
    WebhookSubscriptionRepository,
)

__all__ = [
    "EmailAccountRepository",
    "EmailFolderRepository",
    "EmailMessageRepository",
    "SyncJobRepository",
    "WebhookSubscriptionRepository",
]
