"""Sync use cases: orchestrator, change sync, retry policy, runner, scheduler."""

from mailsync.application.use_cases.sync.incremental_change_sync import IncrementalChangeSync
from mailsync.application.use_cases.sync.retry import RetryPolicy
from mailsync.application.use_cases.sync.run_account_sync import RunAccountSyncUseCase
from mailsync.application.use_cases.sync.sync_runner import SyncRunner
from mailsync.application.use_cases.sync.sync_scheduler import (
    SyncScheduler,
    run_periodic_schedule,
)

__all__ = [
    "IncrementalChangeSync",
    "RetryPolicy",
    "RunAccountSyncUseCase",
    "SyncRunner",
    "SyncScheduler",
    "run_periodic_schedule",
]
