"""Pytest configuration and fixtures for mailsync.

Environment defaults are set before any mailsync import so Settings
validates. Persistence fixtures use a file-backed SQLite database per test
(aiosqlite) created with Base.metadata.create_all.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./mailsync-test.db")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_SECRET", "test-credential-secret-0123456789abcdef")
os.environ.setdefault("ENCRYPTION_SALT", "test-salt-0123456789")
os.environ.setdefault("WEBHOOK_BASE_URL", "https://sync.example.test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("TELEMETRY_ENABLED", "false")

from collections.abc import AsyncIterator, Awaitable, Callable  # noqa: E402
from datetime import datetime  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from mailsync.core.config import Settings, get_settings  # noqa: E402
from mailsync.infrastructure.external.email.encryption import CredentialEncryptor  # noqa: E402
from mailsync.infrastructure.external.email.registry import ProviderAdapterRegistry  # noqa: E402
from mailsync.infrastructure.persistence import models  # noqa: E402, F401
from mailsync.infrastructure.persistence.database import (  # noqa: E402
    Base,
    build_engine,
    build_session_factory,
)
from mailsync.infrastructure.persistence.models import EmailAccount  # noqa: E402
from mailsync.infrastructure.services import AccountAdapterService  # noqa: E402
from tests.fakes import (  # noqa: E402
    FAKE_FAMILY,
    FAKE_PUSH_FAMILY,
    FakeAdapter,
    FakeMailbox,
    FakeSubscriptionAdapter,
)


@pytest.fixture
def settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Fresh SQLite database file per test."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailsync.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def encryptor(settings: Settings) -> CredentialEncryptor:
    return CredentialEncryptor(settings)


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def registry(mailbox: FakeMailbox) -> ProviderAdapterRegistry:
    """Registry holding only the in-memory families, both bound to one mailbox."""
    fake_registry = ProviderAdapterRegistry()
    fake_registry.register(FAKE_FAMILY, lambda credentials, **_: FakeAdapter(mailbox))
    fake_registry.register(
        FAKE_PUSH_FAMILY, lambda credentials, **_: FakeSubscriptionAdapter(mailbox)
    )
    return fake_registry


@pytest.fixture
def adapters(
    session_factory: async_sessionmaker[AsyncSession],
    registry: ProviderAdapterRegistry,
    encryptor: CredentialEncryptor,
    settings: Settings,
) -> AccountAdapterService:
    return AccountAdapterService(
        session_factory, registry, encryptor=encryptor, settings=settings
    )


@pytest.fixture
def make_account(
    session_factory: async_sessionmaker[AsyncSession],
    encryptor: CredentialEncryptor,
) -> Callable[..., Awaitable[str]]:
    """Insert an email_account row and return its id."""

    async def _make(
        *,
        provider_family: str = FAKE_FAMILY,
        email_address: str = "user@example.com",
        secrets: dict[str, Any] | None = None,
        token_expires_at: datetime | None = None,
        **fields: Any,
    ) -> str:
        account = EmailAccount(
            user_id="user-1",
            email_address=email_address,
            provider_family=provider_family,
            credentials_encrypted=encryptor.encrypt(
                secrets or {"access_token": "at-1", "refresh_token": "rt-1"}
            ),
            token_expires_at=token_expires_at,
            **fields,
        )
        async with session_factory() as session, session.begin():
            session.add(account)
            await session.flush()
            return account.id

    return _make
