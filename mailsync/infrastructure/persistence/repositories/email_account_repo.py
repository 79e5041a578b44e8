"""Email account repository: sync-state transitions and monitoring aggregates."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import AccountStatus, SyncStatus
from mailsync.infrastructure.persistence.models.email_account import EmailAccount
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class EmailAccountRepository(BaseRepository[EmailAccount]):
    """Only the sync engine writes the sync columns; every write goes through here."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, EmailAccount)

    async def _update(self, account_id: str, **values: Any) -> None:
        await self.db.execute(
            update(EmailAccount).where(EmailAccount.id == account_id).values(**values)
        )

    async def mark_sync_started(self, account_id: str) -> None:
        await self._update(
            account_id, sync_status=SyncStatus.SYNCING.value, sync_progress=0
        )

    async def set_progress(self, account_id: str, progress: int) -> None:
        await self._update(account_id, sync_progress=max(0, min(100, progress)))

    async def mark_sync_succeeded(self, account_id: str, at: datetime) -> None:
        await self._update(
            account_id,
            status=AccountStatus.ACTIVE.value,
            sync_status=SyncStatus.IDLE.value,
            sync_progress=100,
            last_sync_at=at,
            last_successful_sync_at=at,
            last_sync_error=None,
        )

    async def mark_sync_failed(
        self, account_id: str, error: str, at: datetime, *, auth_failure: bool
    ) -> None:
        """Record a failed run; status flips to error only for auth failures."""
        values: dict[str, Any] = {
            "sync_status": SyncStatus.IDLE.value,
            "sync_progress": 0,
            "last_sync_error": error,
            "last_sync_at": at,
        }
        if auth_failure:
            values["status"] = AccountStatus.ERROR.value
        await self._update(account_id, **values)

    async def set_change_cursor(self, account_id: str, cursor: str | None) -> None:
        await self._update(account_id, change_cursor=cursor)

    async def update_credentials(
        self,
        account_id: str,
        credentials_encrypted: str,
        token_expires_at: datetime | None,
    ) -> None:
        await self._update(
            account_id,
            credentials_encrypted=credentials_encrypted,
            token_expires_at=token_expires_at,
        )

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(
            select(EmailAccount.status, func.count()).group_by(EmailAccount.status)
        )
        return {status: count for status, count in result.all()}

    async def count_syncing(self) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(EmailAccount)
            .where(EmailAccount.sync_status == SyncStatus.SYNCING.value)
        )
        return int(result.scalar_one())

    async def list_recent_errors(self, limit: int = 10) -> list[EmailAccount]:
        """Accounts with a non-null last error, most recent sync first."""
        result = await self.db.execute(
            select(EmailAccount)
            .where(EmailAccount.last_sync_error.is_not(None))
            .order_by(EmailAccount.last_sync_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_due_for_sync(self, synced_before: datetime) -> list[EmailAccount]:
        """Active, idle accounts never synced or last synced before the cutoff, oldest first."""
        result = await self.db.execute(
            select(EmailAccount)
            .where(
                EmailAccount.status == AccountStatus.ACTIVE.value,
                EmailAccount.sync_status == SyncStatus.IDLE.value,
                or_(
                    EmailAccount.last_sync_at.is_(None),
                    EmailAccount.last_sync_at < synced_before,
                ),
            )
            .order_by(EmailAccount.last_sync_at.asc().nulls_first())
        )
        return list(result.scalars().all())
