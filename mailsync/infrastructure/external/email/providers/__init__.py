"""Email providers: Graph delta query, Gmail history, IMAP, aggregator."""

from mailsync.infrastructure.external.email.providers.aggregator_provider import (
    AggregatorProvider,
)
from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailsync.infrastructure.external.email.providers.imap_provider import IMAPProvider
from mailsync.infrastructure.external.email.providers.outlook_provider import OutlookProvider

__all__ = [
    "AggregatorProvider",
    "GmailProvider",
    "IMAPProvider",
    "OutlookProvider",
]
