"""Mailbox folder scoped to an account."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.domain.enums import FolderType
from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import AccountScopedModel


class EmailFolder(AccountScopedModel, Base):
    """Provider folder. Unique per (account_id, external_id).

    sync_cursor is written only after the last page of a listing has been
    stored, so a crash resumes from the last completed listing.
    """

    __tablename__ = "email_folder"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_email_folder_account_external"),
    )

    external_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    folder_type: Mapped[str] = mapped_column(
        String, nullable=False, default=FolderType.CUSTOM.value
    )
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
