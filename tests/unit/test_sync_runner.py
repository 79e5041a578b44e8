"""Tests for SyncRunner: per-account serialization, global limit, timeouts, background tasks."""

import asyncio

import pytest

from mailsync.application.dtos.sync import SyncRequest, SyncResult
from mailsync.application.use_cases.sync import RetryPolicy, SyncRunner
from mailsync.domain.enums import SyncMode
from mailsync.domain.exceptions import SyncRetryExhaustedError
from mailsync.infrastructure.exceptions import ProviderAuthError


async def _no_sleep(seconds: float) -> None:
    return None


class _RecordingUseCase:
    """Stands in for RunAccountSyncUseCase; blocks until released."""

    def __init__(self, *, hold: float = 0.01) -> None:
        self.hold = hold
        self.active: dict[str, int] = {}
        self.max_per_account = 0
        self.max_total = 0
        self.calls: list[tuple[str, int]] = []
        self.error: BaseException | None = None

    async def execute(self, request: SyncRequest, *, attempt: int = 1) -> SyncResult:
        self.calls.append((request.account_id, attempt))
        self.active[request.account_id] = self.active.get(request.account_id, 0) + 1
        self.max_per_account = max(self.max_per_account, self.active[request.account_id])
        self.max_total = max(self.max_total, sum(self.active.values()))
        try:
            await asyncio.sleep(self.hold)
            if self.error is not None:
                raise self.error
        finally:
            self.active[request.account_id] -= 1
        return SyncResult(
            account_id=request.account_id,
            job_id=f"job-{len(self.calls)}",
            sync_mode=request.sync_mode,
            emails_synced=1,
            folders_synced=1,
        )


def _runner(use_case: _RecordingUseCase, **kwargs) -> SyncRunner:
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=2, sleep=_no_sleep))
    return SyncRunner(use_case, **kwargs)


async def test_same_account_runs_are_serialized() -> None:
    """Two requests for one account never overlap."""
    use_case = _RecordingUseCase(hold=0.05)
    runner = _runner(use_case)

    first = runner.submit(SyncRequest("acc-1"))
    second = runner.submit(SyncRequest("acc-1", SyncMode.INITIAL))
    await asyncio.sleep(0.01)
    assert runner.is_running("acc-1") is True
    await runner.drain()

    assert use_case.max_per_account == 1
    assert len(use_case.calls) == 2
    assert (await first).job_id != (await second).job_id
    assert runner.is_running("acc-1") is False
    assert len(runner._account_locks) == 0


async def test_global_limit_bounds_concurrent_accounts() -> None:
    """No more than max_concurrent accounts sync at once."""
    use_case = _RecordingUseCase(hold=0.05)
    runner = _runner(use_case, max_concurrent=2)

    results = await asyncio.gather(*(runner.run(SyncRequest(f"acc-{i}")) for i in range(5)))

    assert len(results) == 5
    assert use_case.max_total == 2


async def test_attempt_timeout_is_retried_then_exhausted() -> None:
    """An attempt exceeding the timeout counts as a retryable failure."""
    use_case = _RecordingUseCase(hold=1.0)
    runner = _runner(use_case, attempt_timeout_seconds=0.01)

    with pytest.raises(SyncRetryExhaustedError) as exc_info:
        await runner.run(SyncRequest("acc-1"))

    assert exc_info.value.attempts == 2
    assert use_case.calls == [("acc-1", 1), ("acc-1", 2)]


async def test_auth_failure_is_not_retried() -> None:
    """Non-retryable errors surface after one attempt."""
    use_case = _RecordingUseCase()
    use_case.error = ProviderAuthError("revoked")
    runner = _runner(use_case)

    with pytest.raises(ProviderAuthError):
        await runner.run(SyncRequest("acc-1"))

    assert use_case.calls == [("acc-1", 1)]


async def test_submitted_failure_is_logged_not_raised() -> None:
    """A failing background sync resolves to None."""
    use_case = _RecordingUseCase()
    use_case.error = ProviderAuthError("revoked")
    runner = _runner(use_case)

    task = runner.submit(SyncRequest("acc-1"))
    await runner.drain()

    assert await task is None
    assert runner.pending_tasks == 0


async def test_shutdown_cancels_background_syncs() -> None:
    """shutdown cancels running tasks and waits for them."""
    use_case = _RecordingUseCase(hold=10.0)
    runner = _runner(use_case)

    task = runner.submit(SyncRequest("acc-1"))
    await asyncio.sleep(0.01)
    await runner.shutdown()

    assert task.cancelled()
    assert runner.pending_tasks == 0
    assert len(runner._account_locks) == 0
