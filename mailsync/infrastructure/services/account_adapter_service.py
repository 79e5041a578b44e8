"""Account adapter service: decrypt credentials, build adapters, refresh tokens.

Keeps credential decryption and token persistence out of the sync and
webhook use cases.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.core.config import Settings, get_settings
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor
from mailsync.infrastructure.external.email.protocols import (
    MailProviderAdapter,
    ProviderCredentials,
)
from mailsync.infrastructure.external.email.registry import ProviderAdapterRegistry
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    """Account fields read once, so no ORM instance outlives its session."""

    id: str
    email_address: str
    provider_family: str
    credentials_encrypted: str
    token_expires_at: datetime | None
    connection_params: dict[str, Any]
    change_cursor: str | None

    @classmethod
    def from_model(cls, account: EmailAccount) -> AccountSnapshot:
        return cls(
            id=account.id,
            email_address=account.email_address,
            provider_family=account.provider_family,
            credentials_encrypted=account.credentials_encrypted,
            token_expires_at=ensure_utc(account.token_expires_at),
            connection_params=dict(account.connection_params or {}),
            change_cursor=account.change_cursor,
        )


class AccountAdapterService:
    """Turns an account row into a ready-to-use provider adapter."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ProviderAdapterRegistry,
        *,
        encryptor: CredentialEncryptor | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._settings = settings or get_settings()
        self._encryptor = encryptor or CredentialEncryptor(self._settings)
        self._clock = clock

    @property
    def registry(self) -> ProviderAdapterRegistry:
        return self._registry

    def credentials_for(self, account: AccountSnapshot) -> ProviderCredentials:
        """Decrypt the stored credential blob. Raises CredentialException."""
        return ProviderCredentials(
            provider_family=account.provider_family,
            email_address=account.email_address,
            secrets=self._encryptor.decrypt(account.credentials_encrypted),
            token_expires_at=account.token_expires_at,
            connection_params=account.connection_params,
            account_id=account.id,
        )

    def create_adapter(self, credentials: ProviderCredentials) -> MailProviderAdapter:
        """Raises UnsupportedProviderError for an unregistered family."""
        return self._registry.create(credentials)

    def token_needs_refresh(self, credentials: ProviderCredentials) -> bool:
        expires_at = ensure_utc(credentials.token_expires_at)
        if expires_at is None:
            return False
        window = timedelta(seconds=self._settings.token_refresh_window_seconds)
        return expires_at - self._clock() <= window

    async def refresh_if_needed(
        self, credentials: ProviderCredentials, adapter: MailProviderAdapter
    ) -> bool:
        """Refresh and persist tokens when they expire within the refresh window.

        Returns True when new tokens were stored.

        Raises:
            ProviderAuthError: The provider rejected the refresh token.
            Exception: Any other refresh failure, unchanged (transient errors
                stay retryable).
        """
        if not self.token_needs_refresh(credentials):
            return False
        refreshed = await adapter.refresh_token()
        if refreshed is None:
            return False
        secrets = dict(credentials.secrets)
        secrets["access_token"] = refreshed.access_token
        if refreshed.refresh_token:
            secrets["refresh_token"] = refreshed.refresh_token
        credentials.secrets = secrets
        credentials.token_expires_at = refreshed.expires_at
        if credentials.account_id:
            async with self._session_factory() as session, session.begin():
                await EmailAccountRepository(session).update_credentials(
                    credentials.account_id,
                    self._encryptor.encrypt(secrets),
                    refreshed.expires_at,
                )
        logger.info("Refreshed token for account %s", credentials.account_id)
        return True
