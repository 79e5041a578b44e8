"""Provider adapter protocols and data structures (provider-agnostic).

Every provider family returns these types; nothing above the adapter layer
sees Graph, Gmail, IMAP or aggregator payloads. Cursors are opaque strings:
callers store them and hand them back, never parse them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class ProviderCredentials:
    """Decrypted credentials and connection settings for one account."""

    provider_family: str
    email_address: str
    secrets: dict[str, Any]  # access_token/refresh_token or username/password
    token_expires_at: datetime | None = None
    connection_params: dict[str, Any] = field(default_factory=dict)
    account_id: str | None = None


@dataclass(frozen=True)
class ProviderFolder:
    """A folder (or label) as listed by the provider."""

    id: str
    name: str
    total_messages: int = 0
    unread_messages: int = 0
    # Provider-declared folder role ("Sent", "Junk", ...) when the API has one
    type_hint: str | None = None


@dataclass
class ProviderMessage:
    """Universal message structure returned by listings and change feeds."""

    message_id: str
    thread_id: str | None = None
    folder_id: str | None = None
    subject: str = ""
    from_address: str = ""
    to_addresses: list[str] = field(default_factory=list)
    cc_addresses: list[str] = field(default_factory=list)
    snippet: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    received_at: datetime | None = None
    sent_at: datetime | None = None
    is_read: bool = False
    is_starred: bool = False
    is_draft: bool = False
    has_attachments: bool = False
    labels: list[str] = field(default_factory=list)
    provider_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class EmailPage:
    """One page of a folder listing.

    next_cursor resumes the listing; once has_more is False it is the
    checkpoint to store on the folder (None when the provider has none).
    """

    emails: list[ProviderMessage]
    next_cursor: str | None
    has_more: bool


@dataclass(frozen=True)
class FlagChange:
    """Read/starred/label change for a message already stored locally."""

    message_id: str
    is_read: bool
    is_starred: bool
    labels: list[str] | None = None
    folder_id: str | None = None


@dataclass
class ChangePage:
    """One page of an account change feed."""

    added: list[ProviderMessage] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    flag_changed: list[FlagChange] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


@dataclass(frozen=True)
class TokenRefreshResult:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None


@dataclass(frozen=True)
class RemoteSubscription:
    """Subscription as acknowledged by the provider."""

    id: str
    expiration: datetime
    resource: str
    change_type: str


class MailProviderAdapter(Protocol):
    """Uniform interface over one provider family (DIP).

    fetch_emails and fetch_changes must be resumable from any cursor they
    returned earlier. An expired or invalid cursor raises CursorExpiredError;
    rejected credentials raise ProviderAuthError.
    """

    @property
    def supports_change_feed(self) -> bool: ...

    async def fetch_folders(self) -> list[ProviderFolder]: ...

    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> EmailPage: ...

    async def fetch_changes(self, cursor: str) -> ChangePage: ...

    async def current_change_cursor(self) -> str | None: ...

    async def refresh_token(self) -> TokenRefreshResult | None: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class SubscriptionCapable(Protocol):
    """Adapters whose provider offers push-notification subscriptions."""

    @property
    def default_subscription_resource(self) -> str: ...

    @property
    def max_subscription_minutes(self) -> int: ...

    async def create_subscription(
        self,
        *,
        resource: str,
        change_type: str,
        notification_url: str,
        client_state: str,
        expiration: datetime,
    ) -> RemoteSubscription: ...

    async def renew_subscription(self, subscription_id: str, expiration: datetime) -> datetime: ...

    async def delete_subscription(self, subscription_id: str) -> None: ...
