"""Email message repository.

Every write is keyed on (account_id, message_id). Upserts and flag updates
only touch rows whose synced values actually differ, so replaying the same
provider state leaves rows (including updated_at) untouched.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.models.email_message import EmailMessage
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.utils.datetime import utc_now

# Columns refreshed from the provider on conflict. category is deliberately absent.
SYNCED_COLUMNS: tuple[str, ...] = (
    "thread_id",
    "folder_id",
    "folder_type",
    "subject",
    "from_address",
    "to_addresses",
    "cc_addresses",
    "snippet",
    "body_text",
    "body_html",
    "received_at",
    "sent_at",
    "is_read",
    "is_starred",
    "is_draft",
    "has_attachments",
    "labels",
)


class EmailMessageRepository(BaseRepository[EmailMessage]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, EmailMessage)

    async def upsert(self, values: Mapping[str, Any]) -> None:
        """Insert or update one message by (account_id, message_id).

        values must contain account_id and message_id; category is used on
        insert only.
        """
        stmt = self._insert().values(**values)
        synced = [c for c in SYNCED_COLUMNS if c in values]
        set_: dict[str, Any] = {c: getattr(stmt.excluded, c) for c in synced}
        set_["updated_at"] = utc_now()
        stmt = stmt.on_conflict_do_update(
            index_elements=[EmailMessage.account_id, EmailMessage.message_id],
            set_=set_,
            where=or_(
                *(
                    getattr(EmailMessage, c).is_distinct_from(getattr(stmt.excluded, c))
                    for c in synced
                )
            ),
        )
        await self.db.execute(stmt)

    async def update_flags(
        self,
        account_id: str,
        message_id: str,
        *,
        is_read: bool,
        is_starred: bool,
        folder_id: str | None = None,
        folder_type: str | None = None,
    ) -> int:
        """Partial update of folder assignment and read/starred flags only.

        The folder columns are left alone when folder_id is None. Returns the
        number of rows changed (0 when absent or already current).
        """
        values: dict[str, Any] = {"is_read": is_read, "is_starred": is_starred}
        if folder_id is not None:
            values["folder_id"] = folder_id
            values["folder_type"] = folder_type
        result = await self.db.execute(
            update(EmailMessage)
            .where(
                EmailMessage.account_id == account_id,
                EmailMessage.message_id == message_id,
                or_(
                    *(
                        getattr(EmailMessage, column).is_distinct_from(value)
                        for column, value in values.items()
                    )
                ),
            )
            .values(**values, updated_at=utc_now())
        )
        return result.rowcount or 0

    async def delete_by_message_ids(self, account_id: str, message_ids: Iterable[str]) -> int:
        """Delete rows by provider message id; missing ids are ignored."""
        ids = list(message_ids)
        if not ids:
            return 0
        result = await self.db.execute(
            delete(EmailMessage).where(
                EmailMessage.account_id == account_id,
                EmailMessage.message_id.in_(ids),
            )
        )
        return result.rowcount or 0

    async def get_by_message_id(self, account_id: str, message_id: str) -> EmailMessage | None:
        result = await self.db.execute(
            select(EmailMessage).where(
                EmailMessage.account_id == account_id,
                EmailMessage.message_id == message_id,
            )
        )
        return result.scalar_one_or_none()

    async def count_created_since(self, account_id: str, since: datetime) -> int:
        """Rows first inserted for the account at or after since."""
        result = await self.db.execute(
            select(func.count())
            .select_from(EmailMessage)
            .where(EmailMessage.account_id == account_id, EmailMessage.created_at >= since)
        )
        return int(result.scalar_one())

    async def count_all(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(EmailMessage))
        return int(result.scalar_one())

    async def count_received_since(self, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(EmailMessage)
            .where(EmailMessage.received_at >= since)
        )
        return int(result.scalar_one())

    async def top_accounts_by_volume(self, limit: int = 5) -> list[tuple[str, str, int]]:
        """Return (account_id, email_address, email_count), largest first."""
        email_count = func.count(EmailMessage.id).label("email_count")
        result = await self.db.execute(
            select(EmailAccount.id, EmailAccount.email_address, email_count)
            .join(EmailMessage, EmailMessage.account_id == EmailAccount.id)
            .group_by(EmailAccount.id, EmailAccount.email_address)
            .order_by(email_count.desc())
            .limit(limit)
        )
        return [(row[0], row[1], int(row[2])) for row in result.all()]
