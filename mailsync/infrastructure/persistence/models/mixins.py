"""SQLAlchemy mixins shared by the sync models.

CuidMixin, TimestampMixin and AccountScopedMixin, combined as
AccountScopedModel for every table that hangs off email_account.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

from mailsync.shared.utils.datetime import utc_now
from mailsync.shared.utils.generators import generate_cuid

# JSONB on Postgres so upserts can compare list columns with IS DISTINCT FROM.
JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class CuidMixin:
    """CUID2 string primary key."""

    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(String, primary_key=True, default=generate_cuid)


class TimestampMixin:
    """created_at / updated_at, aware UTC.

    Python-side defaults keep values comparable across Postgres and SQLite.
    Upserts set updated_at explicitly: ON CONFLICT bypasses onupdate.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=utc_now,
            server_default=func.now(),
            nullable=False,
            index=True,
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=utc_now,
            server_default=func.now(),
            onupdate=utc_now,
            nullable=False,
        )


class AccountScopedMixin:
    """account_id FK to email_account with CASCADE delete."""

    @declared_attr
    def account_id(cls) -> Mapped[str]:
        return mapped_column(
            String,
            ForeignKey("email_account.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )


class AccountScopedModel(CuidMixin, AccountScopedMixin, TimestampMixin):
    """CUID + account_id + timestamps."""

    __abstract__ = True
