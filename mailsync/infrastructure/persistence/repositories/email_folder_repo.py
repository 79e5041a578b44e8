"""Email folder repository: upsert on (account_id, external_id) and cursor checkpoints."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.utils.datetime import utc_now


class EmailFolderRepository(BaseRepository[EmailFolder]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, EmailFolder)

    async def upsert(
        self,
        *,
        account_id: str,
        external_id: str,
        name: str,
        folder_type: str,
        total_count: int,
        unread_count: int,
        sync_enabled_default: bool,
    ) -> None:
        """Insert or refresh a folder.

        sync_enabled_default applies to new rows only; an existing folder keeps
        whatever enabled flag it already has.
        """
        stmt = self._insert().values(
            account_id=account_id,
            external_id=external_id,
            name=name,
            folder_type=folder_type,
            total_count=total_count,
            unread_count=unread_count,
            sync_enabled=sync_enabled_default,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EmailFolder.account_id, EmailFolder.external_id],
            set_={
                "name": stmt.excluded.name,
                "folder_type": stmt.excluded.folder_type,
                "total_count": stmt.excluded.total_count,
                "unread_count": stmt.excluded.unread_count,
                "updated_at": utc_now(),
            },
        )
        await self.db.execute(stmt)

    async def list_for_account(self, account_id: str) -> list[EmailFolder]:
        result = await self.db.execute(
            select(EmailFolder)
            .where(EmailFolder.account_id == account_id)
            .order_by(EmailFolder.name)
        )
        return list(result.scalars().all())

    async def list_enabled(self, account_id: str) -> list[EmailFolder]:
        result = await self.db.execute(
            select(EmailFolder)
            .where(
                EmailFolder.account_id == account_id,
                EmailFolder.sync_enabled.is_(True),
            )
            .order_by(EmailFolder.name)
        )
        return list(result.scalars().all())

    async def set_cursor(self, folder_id: str, cursor: str | None, synced_at: datetime) -> None:
        """Checkpoint a folder after its last page has been stored."""
        await self.db.execute(
            update(EmailFolder)
            .where(EmailFolder.id == folder_id)
            .values(sync_cursor=cursor, last_synced_at=synced_at)
        )

    async def clear_cursors(self, account_id: str) -> None:
        await self.db.execute(
            update(EmailFolder)
            .where(EmailFolder.account_id == account_id)
            .values(sync_cursor=None)
        )
