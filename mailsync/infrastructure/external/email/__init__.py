"""Email integration: protocols, registry, encryption, OAuth drivers, providers."""

from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.external.email.oauth_drivers import (
    GmailDriver,
    OAuthDriver,
    OAuthTokens,
)
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    EmailPage,
    FlagChange,
    MailProviderAdapter,
    ProviderCredentials,
    ProviderFolder,
    ProviderMessage,
    RemoteSubscription,
    SubscriptionCapable,
    TokenRefreshResult,
)
from mailsync.infrastructure.external.email.registry import (
    ProviderAdapterRegistry,
    build_default_registry,
)

__all__ = [
    "ChangePage",
    "CredentialEncryptor",
    "EmailPage",
    "FlagChange",
    "GmailDriver",
    "MailProviderAdapter",
    "OAuthDriver",
    "OAuthTokens",
    "ProviderAdapterRegistry",
    "ProviderCredentials",
    "ProviderFolder",
    "ProviderMessage",
    "RemoteSubscription",
    "SubscriptionCapable",
    "TokenRefreshResult",
    "build_default_registry",
]
