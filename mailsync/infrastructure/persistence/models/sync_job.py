"""Sync job: one orchestrator attempt for one account."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.domain.enums import SyncJobStatus
from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import AccountScopedModel


class SyncJob(AccountScopedModel, Base):
    """Created when an attempt starts, finalized when it ends.

    Monitoring reads these rows over trailing windows; completed rows are
    never modified.
    """

    __tablename__ = "sync_job"
    __table_args__ = (Index("ix_sync_job_account_started", "account_id", "started_at"),)

    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SyncJobStatus.PENDING.value
    )
    sync_mode: Mapped[str] = mapped_column(String, nullable=False)
    trigger: Mapped[str] = mapped_column(String, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    emails_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
