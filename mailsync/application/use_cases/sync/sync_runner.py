"""Sync runner: concurrency limits, retry and timeouts around the orchestrator."""

from __future__ import annotations

import asyncio

from mailsync.application.dtos.sync import SyncRequest, SyncResult
from mailsync.application.use_cases.sync.retry import RetryPolicy
from mailsync.application.use_cases.sync.run_account_sync import RunAccountSyncUseCase
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.locks import KeyedLocks

logger = get_logger(__name__)


class SyncRunner:
    """Owns the global sync semaphore and the per-account locks.

    At most max_concurrent accounts sync at once, and never two runs of the
    same account: a second request for a busy account waits for the lock.
    The lock is taken before the semaphore so a waiting duplicate does not
    hold a global slot.
    """

    def __init__(
        self,
        use_case: RunAccountSyncUseCase,
        *,
        retry_policy: RetryPolicy | None = None,
        max_concurrent: int = 5,
        attempt_timeout_seconds: float | None = 900.0,
    ) -> None:
        self._use_case = use_case
        self._retry = retry_policy or RetryPolicy()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._account_locks = KeyedLocks()
        self._attempt_timeout = attempt_timeout_seconds
        self._tasks: set[asyncio.Task[SyncResult | None]] = set()

    def is_running(self, account_id: str) -> bool:
        return self._account_locks.locked(account_id)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def run(self, request: SyncRequest) -> SyncResult:
        """Run a sync to completion (with retries) and return its result.

        Raises:
            SyncRetryExhaustedError: Every retryable attempt failed.
            Exception: A non-retryable failure (auth, missing account, ...).
        """
        async with self._account_locks.hold(request.account_id), self._semaphore:
            return await self._retry.run(
                request.account_id, lambda attempt: self._attempt(request, attempt)
            )

    async def _attempt(self, request: SyncRequest, attempt: int) -> SyncResult:
        if self._attempt_timeout is None:
            return await self._use_case.execute(request, attempt=attempt)
        async with asyncio.timeout(self._attempt_timeout):
            return await self._use_case.execute(request, attempt=attempt)

    def submit(self, request: SyncRequest) -> asyncio.Task[SyncResult | None]:
        """Schedule run() in the background; failures are logged, not raised."""
        task = asyncio.create_task(
            self._run_logged(request), name=f"sync:{request.account_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_logged(self, request: SyncRequest) -> SyncResult | None:
        try:
            return await self.run(request)
        except Exception:
            logger.exception(
                "Background sync failed: account=%s trigger=%s",
                request.account_id,
                request.trigger.value,
            )
            return None

    async def drain(self) -> None:
        """Wait for background syncs (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel background syncs and wait for them to unwind."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
