"""Scheduled sync tests: which accounts a scheduler tick submits."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from mailsync.application.dtos.sync import SyncRequest
from mailsync.application.use_cases.sync import SyncScheduler, run_periodic_schedule
from mailsync.domain.enums import AccountStatus, SyncMode, SyncStatus, SyncTrigger

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class _Runner:
    def __init__(self, running: set[str] | None = None) -> None:
        self.submitted: list[SyncRequest] = []
        self.running = running or set()

    def submit(self, request: SyncRequest) -> None:
        self.submitted.append(request)

    def is_running(self, account_id: str) -> bool:
        return account_id in self.running


def _scheduler(session_factory, runner: _Runner) -> SyncScheduler:
    return SyncScheduler(session_factory, runner, interval_seconds=900, clock=lambda: NOW)


async def test_tick_submits_due_accounts_oldest_first(session_factory, make_account) -> None:
    """Never-synced and stale accounts are submitted as scheduled incremental syncs."""
    stale = await make_account(last_sync_at=NOW - timedelta(hours=2))
    never = await make_account()
    await make_account(last_sync_at=NOW - timedelta(minutes=5))
    runner = _Runner()

    submitted = await _scheduler(session_factory, runner).tick()

    assert submitted == [never, stale]
    assert [r.account_id for r in runner.submitted] == [never, stale]
    request = runner.submitted[0]
    assert request.sync_mode is SyncMode.INCREMENTAL
    assert request.trigger is SyncTrigger.SCHEDULE
    assert request.user_id == "user-1"


async def test_tick_skips_error_syncing_and_running_accounts(
    session_factory, make_account
) -> None:
    """Accounts in error, mid-sync or held by the runner are not submitted."""
    await make_account(status=AccountStatus.ERROR.value)
    await make_account(sync_status=SyncStatus.SYNCING.value)
    busy = await make_account()
    due = await make_account()
    runner = _Runner(running={busy})

    submitted = await _scheduler(session_factory, runner).tick()

    assert submitted == [due]


async def test_periodic_schedule_survives_a_failed_tick() -> None:
    """A failing tick is logged and the loop keeps ticking until cancelled."""

    class _FlakyScheduler:
        def __init__(self) -> None:
            self.ticks = 0

        async def tick(self) -> list[str]:
            self.ticks += 1
            if self.ticks == 1:
                raise RuntimeError("database unavailable")
            return []

    scheduler = _FlakyScheduler()
    task = asyncio.create_task(run_periodic_schedule(scheduler, 0.001))
    while scheduler.ticks < 3:
        await asyncio.sleep(0.001)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert scheduler.ticks >= 3
