"""Sync API: trigger a sync for an account and read its sync state."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request

from mailsync.api.v1.dependencies import get_email_account_repo, get_sync_runner
from mailsync.application.dtos.sync import SyncRequest
from mailsync.application.use_cases.sync import SyncRunner
from mailsync.core.limiter import limit_sync_trigger
from mailsync.domain.enums import AccountStatus, SyncTrigger
from mailsync.domain.exceptions import AccountNotFoundException, AccountRequiresReauthException
from mailsync.infrastructure.persistence.repositories import EmailAccountRepository
from mailsync.schemas.sync import (
    SyncAcceptedResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
)

router = APIRouter()


@router.post("/{account_id}/sync", response_model=SyncAcceptedResponse, status_code=202)
@limit_sync_trigger
async def trigger_sync(
    request: Request,
    account_id: str,
    repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    runner: Annotated[SyncRunner, Depends(get_sync_runner)],
    body: Annotated[SyncTriggerRequest | None, Body()] = None,
) -> SyncAcceptedResponse:
    """Submit a sync to the runner and return 202 immediately.

    A sync already running for the account is not interrupted; the new one
    waits for it. An account halted by rejected credentials answers 409
    until it is re-authorized.
    """
    body = body or SyncTriggerRequest()
    account = await repo.get_by_id(account_id)
    if account is None:
        raise AccountNotFoundException(account_id)
    if account.status == AccountStatus.ERROR.value:
        raise AccountRequiresReauthException(account_id)
    runner.submit(
        SyncRequest(
            account_id=account_id,
            sync_mode=body.sync_mode,
            trigger=SyncTrigger.MANUAL,
            user_id=account.user_id,
            provider_family=account.provider_family,
        )
    )
    return SyncAcceptedResponse(account_id=account_id, sync_mode=body.sync_mode)


@router.get("/{account_id}/sync-status", response_model=SyncStatusResponse)
async def get_sync_status(
    account_id: str,
    repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    runner: Annotated[SyncRunner, Depends(get_sync_runner)],
) -> SyncStatusResponse:
    """Return the account's sync fields and whether a run is in progress."""
    account = await repo.get_by_id(account_id)
    if account is None:
        raise AccountNotFoundException(account_id)
    return SyncStatusResponse(
        account_id=account.id,
        status=account.status,
        sync_status=account.sync_status,
        sync_progress=account.sync_progress,
        last_sync_at=account.last_sync_at,
        last_successful_sync_at=account.last_successful_sync_at,
        last_sync_error=account.last_sync_error,
        is_running=runner.is_running(account_id),
    )
