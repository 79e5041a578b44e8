"""Sync job repository: attempt lifecycle and trailing-window history."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import SyncJobStatus
from mailsync.infrastructure.persistence.models.sync_job import SyncJob
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class SyncJobRepository(BaseRepository[SyncJob]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, SyncJob)

    async def start(
        self,
        *,
        account_id: str,
        sync_mode: str,
        trigger: str,
        attempt: int,
        started_at: datetime,
    ) -> SyncJob:
        return await self.create(
            SyncJob(
                account_id=account_id,
                sync_mode=sync_mode,
                trigger=trigger,
                attempt=attempt,
                status=SyncJobStatus.RUNNING.value,
                started_at=started_at,
            )
        )

    async def finish(
        self,
        job_id: str,
        *,
        status: SyncJobStatus,
        completed_at: datetime,
        emails_synced: int = 0,
        error: str | None = None,
    ) -> None:
        """Finalize a running job; jobs already finalized are left as they are."""
        await self.db.execute(
            update(SyncJob)
            .where(SyncJob.id == job_id, SyncJob.status == SyncJobStatus.RUNNING.value)
            .values(
                status=status.value,
                completed_at=completed_at,
                emails_synced=emails_synced,
                error=error,
            )
        )

    async def list_since(self, account_id: str, since: datetime) -> list[SyncJob]:
        """Jobs started at or after since, oldest first."""
        result = await self.db.execute(
            select(SyncJob)
            .where(SyncJob.account_id == account_id, SyncJob.started_at >= since)
            .order_by(SyncJob.started_at.asc())
        )
        return list(result.scalars().all())

    async def list_recent(self, account_id: str, limit: int = 20) -> list[SyncJob]:
        """Most recent jobs first."""
        result = await self.db.execute(
            select(SyncJob)
            .where(SyncJob.account_id == account_id)
            .order_by(SyncJob.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
