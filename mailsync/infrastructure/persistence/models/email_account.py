"""Email account: one external mailbox connection and its sync state."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.domain.enums import AccountStatus, SyncStatus
from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import CuidMixin, TimestampMixin


class EmailAccount(CuidMixin, TimestampMixin, Base):
    """Mailbox connection.

    Created by the account-connection flow. The sync engine owns every sync
    column (status, sync_status, progress, cursors, errors). Credentials are
    a Fernet-encrypted JSON blob (see CredentialEncryptor).
    """

    __tablename__ = "email_account"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    email_address: Mapped[str] = mapped_column(String, nullable=False)
    provider_family: Mapped[str] = mapped_column(String, nullable=False)
    credentials_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    connection_params: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String, nullable=False, default=AccountStatus.ACTIVE.value, index=True
    )
    sync_status: Mapped[str] = mapped_column(
        String, nullable=False, default=SyncStatus.IDLE.value
    )
    sync_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_successful_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Opaque account-level change cursor (Gmail historyId, Graph delta links, ...)
    change_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
