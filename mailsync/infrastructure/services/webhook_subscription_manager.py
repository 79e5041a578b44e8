"""Webhook subscription manager: push subscriptions per account.

Lifecycle of one account's subscription: none -> active -> (renewed)* ->
expired or deleted. At most one active row per account, enforced by the
per-account lock here and by a partial unique index in the database.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import (
    RenewalOutcome,
    SubscriptionInfo,
    SweepResult,
    SyncRequest,
)
from mailsync.core.config import Settings, get_settings
from mailsync.domain.enums import AccountStatus, SyncMode, SyncTrigger
from mailsync.domain.exceptions import (
    AccountNotFoundException,
    ResourceNotFoundException,
    WebhooksNotSupportedError,
)
from mailsync.infrastructure.exceptions import SubscriptionNotFoundError
from mailsync.infrastructure.external.email.protocols import SubscriptionCapable
from mailsync.infrastructure.persistence.models.webhook_subscription import (
    WebhookSubscription,
)
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    WebhookSubscriptionRepository,
)
from mailsync.infrastructure.services.account_adapter_service import (
    AccountAdapterService,
    AccountSnapshot,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.datetime import ensure_utc, utc_now
from mailsync.shared.utils.locks import KeyedLocks

logger = get_logger(__name__)

CHANGE_TYPE = "created,updated"


@dataclass(frozen=True)
class _SubscriptionRow:
    subscription_id: str
    account_id: str
    resource: str
    client_state: str
    is_active: bool
    expiration: datetime

    @classmethod
    def from_model(cls, row: WebhookSubscription) -> _SubscriptionRow:
        return cls(
            subscription_id=row.subscription_id,
            account_id=row.account_id,
            resource=row.resource,
            client_state=row.client_state,
            is_active=row.is_active,
            expiration=ensure_utc(row.expiration_date_time),
        )


class WebhookSubscriptionManager:
    """Create, renew, sweep and delete push subscriptions; verify notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: AccountAdapterService,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._adapters = adapters
        self._settings = settings or get_settings()
        self._clock = clock
        self._account_locks = KeyedLocks()

    @asynccontextmanager
    async def _subscription_adapter(self, account_id: str) -> AsyncIterator[SubscriptionCapable]:
        """Adapter for the account with a fresh token; closed on exit."""
        async with self._session_factory() as session:
            account_model = await EmailAccountRepository(session).get_by_id(account_id)
            if account_model is None:
                raise AccountNotFoundException(account_id)
            account = AccountSnapshot.from_model(account_model)
        credentials = self._adapters.credentials_for(account)
        adapter = self._adapters.create_adapter(credentials)
        try:
            if not isinstance(adapter, SubscriptionCapable):
                raise WebhooksNotSupportedError(account.provider_family)
            await self._adapters.refresh_if_needed(credentials, adapter)
            yield adapter
        finally:
            await adapter.aclose()

    def _expiration(self, adapter: SubscriptionCapable) -> datetime:
        minutes = min(self._settings.webhook_max_window_minutes, adapter.max_subscription_minutes)
        return self._clock() + timedelta(minutes=minutes)

    def _new_client_state(self) -> str:
        configured = self._settings.webhook_client_state
        if configured is not None and configured.get_secret_value():
            return configured.get_secret_value()
        return secrets.token_urlsafe(32)

    async def _get_row(self, subscription_id: str) -> _SubscriptionRow | None:
        async with self._session_factory() as session:
            row = await WebhookSubscriptionRepository(session).get_by_subscription_id(
                subscription_id
            )
            return _SubscriptionRow.from_model(row) if row else None

    @traced("webhooks.subscribe")
    async def subscribe(self, account_id: str) -> SubscriptionInfo:
        """Create the account's subscription, or renew the active one.

        Raises:
            AccountNotFoundException: No such account.
            WebhooksNotSupportedError: The provider family has no push API.
        """
        add_span_attributes(account_id=account_id)
        async with self._account_locks.hold(account_id):
            async with self._session_factory() as session:
                existing = await WebhookSubscriptionRepository(session).get_active_for_account(
                    account_id
                )
                current = _SubscriptionRow.from_model(existing) if existing else None
            if current is not None:
                outcome = await self._renew_unlocked(current)
                if outcome.renewed and outcome.expiration is not None:
                    return SubscriptionInfo(
                        subscription_id=current.subscription_id,
                        account_id=account_id,
                        resource=current.resource,
                        expiration=outcome.expiration,
                        created=False,
                    )
                # The provider dropped it; the row is inactive now, so create a new one.
            return await self._create_unlocked(account_id)

    async def _create_unlocked(self, account_id: str) -> SubscriptionInfo:
        async with self._subscription_adapter(account_id) as adapter:
            resource = adapter.default_subscription_resource
            client_state = self._new_client_state()
            notification_url = self._settings.webhook_notification_url
            remote = await adapter.create_subscription(
                resource=resource,
                change_type=CHANGE_TYPE,
                notification_url=notification_url,
                client_state=client_state,
                expiration=self._expiration(adapter),
            )
            try:
                async with self._session_factory() as session, session.begin():
                    await WebhookSubscriptionRepository(session).create(
                        WebhookSubscription(
                            account_id=account_id,
                            subscription_id=remote.id,
                            resource=remote.resource or resource,
                            change_type=remote.change_type or CHANGE_TYPE,
                            notification_url=notification_url,
                            client_state=client_state,
                            expiration_date_time=remote.expiration,
                            is_active=True,
                        )
                    )
            except IntegrityError:
                logger.warning(
                    "Active subscription already recorded for %s; removing remote %s",
                    account_id,
                    remote.id,
                )
                try:
                    await adapter.delete_subscription(remote.id)
                except SubscriptionNotFoundError:
                    pass
                raise
        logger.info(
            "Created webhook subscription %s for account %s (expires %s)",
            remote.id,
            account_id,
            remote.expiration.isoformat(),
        )
        return SubscriptionInfo(
            subscription_id=remote.id,
            account_id=account_id,
            resource=remote.resource or resource,
            expiration=remote.expiration,
            created=True,
        )

    async def renew(self, subscription_id: str) -> RenewalOutcome:
        """Push the expiration out to now + max window.

        A provider 404 deactivates the local row and returns a failed outcome.

        Raises:
            ResourceNotFoundException: No local row for subscription_id.
        """
        row = await self._get_row(subscription_id)
        if row is None:
            raise ResourceNotFoundException("WebhookSubscription", subscription_id)
        async with self._account_locks.hold(row.account_id):
            return await self._renew_unlocked(row)

    async def _renew_unlocked(self, row: _SubscriptionRow) -> RenewalOutcome:
        async with self._subscription_adapter(row.account_id) as adapter:
            try:
                expiration = await adapter.renew_subscription(
                    row.subscription_id, self._expiration(adapter)
                )
            except SubscriptionNotFoundError as e:
                async with self._session_factory() as session, session.begin():
                    await WebhookSubscriptionRepository(session).mark_inactive(
                        row.subscription_id
                    )
                logger.warning(
                    "Subscription %s no longer exists at the provider; marked inactive",
                    row.subscription_id,
                )
                return RenewalOutcome(
                    subscription_id=row.subscription_id, renewed=False, error=e.message
                )
        async with self._session_factory() as session, session.begin():
            await WebhookSubscriptionRepository(session).set_expiration(
                row.subscription_id, expiration, self._clock()
            )
        logger.info("Renewed subscription %s until %s", row.subscription_id, expiration)
        return RenewalOutcome(
            subscription_id=row.subscription_id, renewed=True, expiration=expiration
        )

    @traced("webhooks.sweep")
    async def sweep(self) -> SweepResult:
        """Renew every active subscription expiring within the renewal window.

        One failing subscription never stops the others.
        """
        cutoff = self._clock() + timedelta(hours=self._settings.webhook_renewal_window_hours)
        async with self._session_factory() as session:
            rows = [
                _SubscriptionRow.from_model(row)
                for row in await WebhookSubscriptionRepository(
                    session
                ).list_active_expiring_before(cutoff)
            ]
        result = SweepResult()
        for row in rows:
            try:
                async with self._account_locks.hold(row.account_id):
                    outcome = await self._renew_unlocked(row)
            except Exception as e:
                logger.warning(
                    "Renewal of subscription %s failed: %s", row.subscription_id, e
                )
                outcome = RenewalOutcome(
                    subscription_id=row.subscription_id,
                    renewed=False,
                    error=str(e) or e.__class__.__name__,
                )
            if outcome.renewed:
                result.renewed += 1
            else:
                result.failed += 1
                result.errors.append(
                    {
                        "subscription_id": row.subscription_id,
                        "account_id": row.account_id,
                        "error": outcome.error,
                    }
                )
        add_span_attributes(renewed=result.renewed, failed=result.failed)
        logger.info("Subscription sweep: %d renewed, %d failed", result.renewed, result.failed)
        return result

    async def unsubscribe(self, subscription_id: str) -> None:
        """Delete remotely (already gone counts as success), then locally.

        Raises:
            ResourceNotFoundException: No local row for subscription_id.
        """
        row = await self._get_row(subscription_id)
        if row is None:
            raise ResourceNotFoundException("WebhookSubscription", subscription_id)
        async with self._account_locks.hold(row.account_id):
            async with self._subscription_adapter(row.account_id) as adapter:
                try:
                    await adapter.delete_subscription(subscription_id)
                except SubscriptionNotFoundError:
                    logger.debug("Subscription %s already gone at provider", subscription_id)
            async with self._session_factory() as session, session.begin():
                await WebhookSubscriptionRepository(session).delete_by_subscription_id(
                    subscription_id
                )
        logger.info("Deleted webhook subscription %s", subscription_id)

    async def handle_notification(
        self,
        subscription_id: str,
        client_state: str | None,
        resource_hint: str | None = None,
    ) -> SyncRequest | None:
        """Verify one notification; return the sync it should trigger, or None.

        Unknown subscriptions and client-state mismatches return None and are
        only logged at debug level. Verified notifications for an account that
        needs re-authorization are dropped as well.
        """
        row = await self._get_row(subscription_id)
        if row is None or not row.is_active:
            logger.debug("Notification for unknown subscription %s dropped", subscription_id)
            return None
        if not client_state or not hmac.compare_digest(
            client_state.encode(), row.client_state.encode()
        ):
            logger.debug("Client state mismatch for subscription %s", subscription_id)
            return None
        async with self._session_factory() as session:
            account = await EmailAccountRepository(session).get_by_id(row.account_id)
            account_status = account.status if account else None
        if account_status != AccountStatus.ACTIVE.value:
            logger.info(
                "Notification for account %s dropped: status=%s", row.account_id, account_status
            )
            return None
        logger.debug(
            "Notification for account %s (resource=%s)", row.account_id, resource_hint
        )
        return SyncRequest(
            account_id=row.account_id,
            sync_mode=SyncMode.INCREMENTAL,
            trigger=SyncTrigger.WEBHOOK,
        )


async def run_periodic_sweep(manager: WebhookSubscriptionManager, interval_seconds: float) -> None:
    """Sweep forever at a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await manager.sweep()
        except Exception:
            logger.exception("Subscription sweep failed")
