"""Periodic sync scheduling: submits incremental syncs for accounts that are due."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import SyncRequest
from mailsync.application.use_cases.sync.sync_runner import SyncRunner
from mailsync.domain.enums import SyncMode, SyncTrigger
from mailsync.infrastructure.persistence.repositories import EmailAccountRepository
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)


class SyncScheduler:
    """Submits a scheduled incremental sync for every active, idle account
    whose last sync is older than interval_seconds.

    Accounts in error, accounts already syncing and accounts the runner holds
    a lock for are left alone. Submission is fire-and-forget; the runner's
    per-account lock and retry policy apply as for any other trigger.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        runner: SyncRunner,
        *,
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._runner = runner
        self._interval = timedelta(seconds=interval_seconds)
        self._clock = clock

    async def tick(self) -> list[str]:
        """Submit syncs for the accounts due now and return their ids."""
        cutoff = self._clock() - self._interval
        async with self._session_factory() as session:
            due = await EmailAccountRepository(session).list_due_for_sync(cutoff)
            candidates = [(a.id, a.user_id, a.provider_family) for a in due]

        submitted: list[str] = []
        for account_id, user_id, provider_family in candidates:
            if self._runner.is_running(account_id):
                continue
            self._runner.submit(
                SyncRequest(
                    account_id,
                    SyncMode.INCREMENTAL,
                    trigger=SyncTrigger.SCHEDULE,
                    user_id=user_id,
                    provider_family=provider_family,
                )
            )
            submitted.append(account_id)
        if submitted:
            logger.info("Scheduled sync submitted for %d account(s)", len(submitted))
        return submitted


async def run_periodic_schedule(scheduler: SyncScheduler, tick_seconds: float) -> None:
    """Tick forever at a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(tick_seconds)
        try:
            await scheduler.tick()
        except Exception:
            logger.exception("Scheduled sync tick failed")
