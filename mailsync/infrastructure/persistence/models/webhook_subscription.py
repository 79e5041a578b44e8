"""Push-notification subscription registered with a provider."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import AccountScopedModel


class WebhookSubscription(AccountScopedModel, Base):
    """At most one active row per account (partial unique index)."""

    __tablename__ = "webhook_subscription"
    __table_args__ = (
        Index(
            "uq_webhook_subscription_active_account",
            "account_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    subscription_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    resource: Mapped[str] = mapped_column(String, nullable=False)
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    notification_url: Mapped[str] = mapped_column(String, nullable=False)
    client_state: Mapped[str] = mapped_column(String, nullable=False)
    expiration_date_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_renewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
