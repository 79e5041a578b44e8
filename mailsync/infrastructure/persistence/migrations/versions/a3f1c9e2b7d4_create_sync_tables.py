"""Create sync tables

Revision ID: a3f1c9e2b7d4
Revises:
Create Date: 2026-10-12 09:14:03.512774

Creates email_account, email_folder, email_message, sync_job and
webhook_subscription.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a3f1c9e2b7d4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_VARIANT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def _account_fk() -> sa.Column:
    return sa.Column(
        "account_id",
        sa.String(),
        sa.ForeignKey("email_account.id", ondelete="CASCADE"),
        nullable=False,
    )


def _scoped_indexes(table: str) -> None:
    op.create_index(op.f(f"ix_{table}_account_id"), table, ["account_id"], unique=False)
    op.create_index(op.f(f"ix_{table}_created_at"), table, ["created_at"], unique=False)


def upgrade() -> None:
    """Create the sync schema."""
    op.create_table(
        "email_account",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("email_address", sa.String(), nullable=False),
        sa.Column("provider_family", sa.String(), nullable=False),
        sa.Column("credentials_encrypted", sa.Text(), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("connection_params", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("sync_status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("sync_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("change_cursor", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_email_account_user_id"), "email_account", ["user_id"], unique=False)
    op.create_index(op.f("ix_email_account_status"), "email_account", ["status"], unique=False)
    op.create_index(
        op.f("ix_email_account_created_at"), "email_account", ["created_at"], unique=False
    )

    op.create_table(
        "email_folder",
        sa.Column("id", sa.String(), nullable=False),
        _account_fk(),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("folder_type", sa.String(), nullable=False, server_default="custom"),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_cursor", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id", "external_id", name="uq_email_folder_account_external"
        ),
    )
    _scoped_indexes("email_folder")

    op.create_table(
        "email_message",
        sa.Column("id", sa.String(), nullable=False),
        _account_fk(),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("thread_id", sa.String(), nullable=True),
        sa.Column(
            "folder_id",
            sa.String(),
            sa.ForeignKey("email_folder.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("folder_type", sa.String(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=False, server_default=""),
        sa.Column("from_address", sa.String(), nullable=False, server_default=""),
        sa.Column("to_addresses", JSON_VARIANT, nullable=False),
        sa.Column("cc_addresses", JSON_VARIANT, nullable=False),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_starred", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_draft", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("labels", JSON_VARIANT, nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id", "message_id", name="uq_email_message_account_message"
        ),
    )
    _scoped_indexes("email_message")
    op.create_index(
        op.f("ix_email_message_received_at"), "email_message", ["received_at"], unique=False
    )
    op.create_index(
        "ix_email_message_account_received",
        "email_message",
        ["account_id", "received_at"],
        unique=False,
    )

    op.create_table(
        "sync_job",
        sa.Column("id", sa.String(), nullable=False),
        _account_fk(),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("sync_mode", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("emails_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    _scoped_indexes("sync_job")
    op.create_index(
        "ix_sync_job_account_started", "sync_job", ["account_id", "started_at"], unique=False
    )

    op.create_table(
        "webhook_subscription",
        sa.Column("id", sa.String(), nullable=False),
        _account_fk(),
        sa.Column("subscription_id", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("change_type", sa.String(), nullable=False),
        sa.Column("notification_url", sa.String(), nullable=False),
        sa.Column("client_state", sa.String(), nullable=False),
        sa.Column("expiration_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_renewed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id"),
    )
    _scoped_indexes("webhook_subscription")
    op.create_index(
        op.f("ix_webhook_subscription_expiration_date_time"),
        "webhook_subscription",
        ["expiration_date_time"],
        unique=False,
    )
    # At most one active subscription per account.
    op.create_index(
        "uq_webhook_subscription_active_account",
        "webhook_subscription",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )


def downgrade() -> None:
    """Drop the sync schema."""
    op.drop_index("uq_webhook_subscription_active_account", table_name="webhook_subscription")
    op.drop_index(
        op.f("ix_webhook_subscription_expiration_date_time"), table_name="webhook_subscription"
    )
    op.drop_index(op.f("ix_webhook_subscription_created_at"), table_name="webhook_subscription")
    op.drop_index(op.f("ix_webhook_subscription_account_id"), table_name="webhook_subscription")
    op.drop_table("webhook_subscription")

    op.drop_index("ix_sync_job_account_started", table_name="sync_job")
    op.drop_index(op.f("ix_sync_job_created_at"), table_name="sync_job")
    op.drop_index(op.f("ix_sync_job_account_id"), table_name="sync_job")
    op.drop_table("sync_job")

    op.drop_index("ix_email_message_account_received", table_name="email_message")
    op.drop_index(op.f("ix_email_message_received_at"), table_name="email_message")
    op.drop_index(op.f("ix_email_message_created_at"), table_name="email_message")
    op.drop_index(op.f("ix_email_message_account_id"), table_name="email_message")
    op.drop_table("email_message")

    op.drop_index(op.f("ix_email_folder_created_at"), table_name="email_folder")
    op.drop_index(op.f("ix_email_folder_account_id"), table_name="email_folder")
    op.drop_table("email_folder")

    op.drop_index(op.f("ix_email_account_created_at"), table_name="email_account")
    op.drop_index(op.f("ix_email_account_status"), table_name="email_account")
    op.drop_index(op.f("ix_email_account_user_id"), table_name="email_account")
    op.drop_table("email_account")
