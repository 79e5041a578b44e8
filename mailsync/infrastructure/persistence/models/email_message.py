"""Synchronized email message."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import (
    AccountScopedModel,
    JSONVariant,
)


class EmailMessage(AccountScopedModel, Base):
    """One message. Unique per (account_id, message_id); written by upsert only.

    category is set on insert and left alone afterwards, so enrichment done
    by other subsystems survives re-syncs.
    """

    __tablename__ = "email_message"
    __table_args__ = (
        UniqueConstraint("account_id", "message_id", name="uq_email_message_account_message"),
        Index("ix_email_message_account_received", "account_id", "received_at"),
    )

    message_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True)
    folder_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("email_folder.id", ondelete="SET NULL"), nullable=True
    )
    folder_type: Mapped[str | None] = mapped_column(String, nullable=True)

    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_address: Mapped[str] = mapped_column(String, nullable=False, default="")
    to_addresses: Mapped[list[str]] = mapped_column(JSONVariant, nullable=False, default=list)
    cc_addresses: Mapped[list[str]] = mapped_column(JSONVariant, nullable=False, default=list)
    snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_attachments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    labels: Mapped[list[str]] = mapped_column(JSONVariant, nullable=False, default=list)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
