"""ORM models. Importing this package registers every table on Base.metadata."""

from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.models.email_message import EmailMessage
from mailsync.infrastructure.persistence.models.sync_job import SyncJob
from mailsync.infrastructure.persistence.models.webhook_subscription import (
    WebhookSubscription,
)

__all__ = [
    "EmailAccount",
    "EmailFolder",
    "EmailMessage",
    "SyncJob",
    "WebhookSubscription",
]
