"""Webhook subscription repository."""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.webhook_subscription import (
    WebhookSubscription,
)
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class WebhookSubscriptionRepository(BaseRepository[WebhookSubscription]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, WebhookSubscription)

    async def get_active_for_account(self, account_id: str) -> WebhookSubscription | None:
        result = await self.db.execute(
            select(WebhookSubscription).where(
                WebhookSubscription.account_id == account_id,
                WebhookSubscription.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def get_by_subscription_id(self, subscription_id: str) -> WebhookSubscription | None:
        result = await self.db.execute(
            select(WebhookSubscription).where(
                WebhookSubscription.subscription_id == subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def list_active_expiring_before(self, cutoff: datetime) -> list[WebhookSubscription]:
        result = await self.db.execute(
            select(WebhookSubscription)
            .where(
                WebhookSubscription.is_active.is_(True),
                WebhookSubscription.expiration_date_time <= cutoff,
            )
            .order_by(WebhookSubscription.expiration_date_time.asc())
        )
        return list(result.scalars().all())

    async def set_expiration(
        self, subscription_id: str, expiration: datetime, renewed_at: datetime
    ) -> None:
        await self.db.execute(
            update(WebhookSubscription)
            .where(WebhookSubscription.subscription_id == subscription_id)
            .values(expiration_date_time=expiration, last_renewed_at=renewed_at)
        )

    async def mark_inactive(self, subscription_id: str) -> None:
        await self.db.execute(
            update(WebhookSubscription)
            .where(WebhookSubscription.subscription_id == subscription_id)
            .values(is_active=False)
        )

    async def delete_by_subscription_id(self, subscription_id: str) -> int:
        result = await self.db.execute(
            delete(WebhookSubscription).where(
                WebhookSubscription.subscription_id == subscription_id
            )
        )
        return result.rowcount or 0
