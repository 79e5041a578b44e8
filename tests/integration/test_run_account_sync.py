"""Sync orchestrator integration tests against SQLite with an in-memory provider."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from mailsync.application.dtos.sync import SyncRequest
from mailsync.application.services.error_classifier import is_retryable
from mailsync.application.use_cases.sync import RunAccountSyncUseCase
from mailsync.domain.enums import AccountStatus, SyncJobStatus, SyncMode, SyncStatus
from mailsync.domain.exceptions import AccountNotFoundException, AccountRequiresReauthException
from mailsync.infrastructure.exceptions import (
    ProviderAuthError,
    TransientProviderError,
    UnsupportedProviderError,
)
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    ProviderFolder,
    TokenRefreshResult,
)
from mailsync.infrastructure.messaging import SyncStage
from mailsync.infrastructure.persistence.models import (
    EmailAccount,
    EmailFolder,
    EmailMessage,
    SyncJob,
)
from tests.fakes import message


async def _account(session_factory, account_id: str) -> EmailAccount:
    async with session_factory() as session:
        return await session.get(EmailAccount, account_id)


async def _message_ids(session_factory, account_id: str) -> set[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(EmailMessage.message_id).where(EmailMessage.account_id == account_id)
        )
        return set(result.scalars().all())


async def _folder(session_factory, account_id: str, external_id: str) -> EmailFolder:
    async with session_factory() as session:
        result = await session.execute(
            select(EmailFolder).where(
                EmailFolder.account_id == account_id, EmailFolder.external_id == external_id
            )
        )
        return result.scalar_one()


async def _jobs(session_factory, account_id: str) -> list[SyncJob]:
    async with session_factory() as session:
        result = await session.execute(
            select(SyncJob).where(SyncJob.account_id == account_id).order_by(SyncJob.attempt)
        )
        return list(result.scalars().all())


@pytest.fixture
def use_case(session_factory, adapters) -> RunAccountSyncUseCase:
    return RunAccountSyncUseCase(session_factory, adapters)


async def test_full_listing_stores_every_page_and_finalizes(
    use_case, session_factory, make_account, mailbox
) -> None:
    """Five messages over three pages are stored; job, account and cursors are finalized."""
    mailbox.messages["inbox"] = [message(f"m{i}") for i in range(5)]
    account_id = await make_account()

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    assert result.emails_synced == 5
    assert result.folders_synced == 1
    assert result.used_change_feed is False
    assert result.folders[0].pages == 3
    assert await _message_ids(session_factory, account_id) == {f"m{i}" for i in range(5)}

    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ACTIVE.value
    assert account.sync_status == SyncStatus.IDLE.value
    assert account.sync_progress == 100
    assert account.last_successful_sync_at is not None
    assert account.last_sync_error is None
    assert account.change_cursor == "c0"

    folder = await _folder(session_factory, account_id, "inbox")
    assert folder.folder_type == "inbox"
    assert folder.sync_cursor == "5"
    assert folder.last_synced_at is not None

    jobs = await _jobs(session_factory, account_id)
    assert len(jobs) == 1
    assert jobs[0].status == SyncJobStatus.COMPLETED.value
    assert jobs[0].emails_synced == 5
    assert jobs[0].completed_at is not None
    assert mailbox.closed == 1


async def test_crash_mid_folder_keeps_stored_pages_and_old_cursor(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A failure on page two keeps page one; the folder cursor moves only after a full rerun."""
    mailbox.messages["inbox"] = [message(f"m{i}") for i in range(5)]
    mailbox.failures[("inbox", "2")] = RuntimeError("connection reset")
    account_id = await make_account()

    with pytest.raises(RuntimeError, match="connection reset"):
        await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    assert await _message_ids(session_factory, account_id) == {"m0", "m1"}
    folder = await _folder(session_factory, account_id, "inbox")
    assert folder.sync_cursor is None
    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ACTIVE.value
    assert account.sync_status == SyncStatus.IDLE.value
    assert account.last_sync_error == "connection reset"
    assert account.last_successful_sync_at is None

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL), attempt=2)

    assert result.emails_synced == 5
    assert await _message_ids(session_factory, account_id) == {f"m{i}" for i in range(5)}
    folder = await _folder(session_factory, account_id, "inbox")
    assert folder.sync_cursor == "5"
    jobs = await _jobs(session_factory, account_id)
    assert [j.status for j in jobs] == [
        SyncJobStatus.FAILED.value,
        SyncJobStatus.COMPLETED.value,
    ]
    assert jobs[0].error == "connection reset"


async def test_bad_message_is_skipped_and_rest_of_page_stored(
    use_case, session_factory, make_account, mailbox
) -> None:
    """One malformed message out of five is counted as failed; the other four are stored."""
    mailbox.page_size = 5
    mailbox.messages["inbox"] = [
        message("m0"),
        message("m1"),
        message("m2", to_addresses="bad"),
        message("m3"),
        message("m4"),
    ]
    account_id = await make_account()

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    assert result.emails_synced == 4
    assert result.folders[0].emails_failed == 1
    assert await _message_ids(session_factory, account_id) == {"m0", "m1", "m3", "m4"}
    jobs = await _jobs(session_factory, account_id)
    assert jobs[0].status == SyncJobStatus.COMPLETED.value


async def test_auth_failure_marks_account_error(
    use_case, session_factory, make_account, mailbox
) -> None:
    """Rejected credentials set the account status to error and fail the job."""
    mailbox.failures["fetch_folders"] = ProviderAuthError("token revoked", provider="fake")
    account_id = await make_account()

    with pytest.raises(ProviderAuthError):
        await use_case.execute(SyncRequest(account_id))

    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ERROR.value
    assert account.sync_status == SyncStatus.IDLE.value
    assert account.sync_progress == 0
    assert account.last_sync_error == "token revoked"
    jobs = await _jobs(session_factory, account_id)
    assert jobs[0].status == SyncJobStatus.FAILED.value
    assert mailbox.closed == 1


async def test_non_auth_failure_keeps_account_active(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A provider outage fails the job but does not flip the account to error."""
    mailbox.failures["fetch_folders"] = TimeoutError()
    account_id = await make_account()

    with pytest.raises(TimeoutError):
        await use_case.execute(SyncRequest(account_id))

    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ACTIVE.value
    assert account.last_sync_error == "TimeoutError"


async def test_expiring_token_is_refreshed_and_persisted(
    use_case, session_factory, make_account, mailbox, encryptor
) -> None:
    """A token inside the refresh window is refreshed before any provider call."""
    new_expiry = datetime.now(UTC) + timedelta(hours=1)
    mailbox.refresh_result = TokenRefreshResult("at-2", "rt-2", new_expiry)
    account_id = await make_account(token_expires_at=datetime.now(UTC) - timedelta(minutes=1))

    await use_case.execute(SyncRequest(account_id))

    assert mailbox.calls[0] == ("refresh_token", None)
    account = await _account(session_factory, account_id)
    secrets = encryptor.decrypt(account.credentials_encrypted)
    assert secrets["access_token"] == "at-2"
    assert secrets["refresh_token"] == "rt-2"
    assert account.token_expires_at is not None


async def test_rejected_refresh_token_is_an_auth_failure(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A refresh token the provider rejects puts the account in error."""
    mailbox.failures["refresh_token"] = ProviderAuthError("invalid_grant", provider="fake")
    account_id = await make_account(token_expires_at=datetime.now(UTC))

    with pytest.raises(ProviderAuthError):
        await use_case.execute(SyncRequest(account_id))

    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ERROR.value


async def test_transient_refresh_failure_keeps_account_active(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A network error at the token endpoint stays retryable and leaves the account active."""
    mailbox.failures["refresh_token"] = TransientProviderError("connect timeout", provider="fake")
    account_id = await make_account(token_expires_at=datetime.now(UTC) + timedelta(minutes=1))

    with pytest.raises(TransientProviderError) as exc_info:
        await use_case.execute(SyncRequest(account_id))

    assert is_retryable(exc_info.value)
    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ACTIVE.value
    assert account.last_sync_error == "connect timeout"
    jobs = await _jobs(session_factory, account_id)
    assert jobs[0].status == SyncJobStatus.FAILED.value


async def test_account_in_error_is_not_synced_until_reauthorized(
    use_case, session_factory, make_account, mailbox
) -> None:
    """An account halted by an auth failure never reaches the provider and gets no job row."""
    account_id = await make_account(status=AccountStatus.ERROR.value)

    with pytest.raises(AccountRequiresReauthException) as exc_info:
        await use_case.execute(SyncRequest(account_id, SyncMode.INCREMENTAL))

    assert not is_retryable(exc_info.value)
    assert mailbox.calls == []
    assert await _jobs(session_factory, account_id) == []
    account = await _account(session_factory, account_id)
    assert account.sync_status == SyncStatus.IDLE.value


async def test_fresh_token_is_not_refreshed(use_case, make_account, mailbox) -> None:
    """Tokens expiring well outside the window are used as they are."""
    account_id = await make_account(token_expires_at=datetime.now(UTC) + timedelta(days=1))

    await use_case.execute(SyncRequest(account_id))

    assert ("refresh_token", None) not in mailbox.calls


async def test_incremental_uses_change_feed(
    use_case, session_factory, make_account, mailbox
) -> None:
    """With a stored change cursor only the change feed is read."""
    mailbox.changes["c0"] = ChangePage(added=[message("n1")], next_cursor="c1")
    account_id = await make_account(change_cursor="c0")

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INCREMENTAL))

    assert result.used_change_feed is True
    assert result.emails_synced == 1
    assert await _message_ids(session_factory, account_id) == {"n1"}
    assert not [c for c in mailbox.calls if c[0] == "fetch_emails"]
    account = await _account(session_factory, account_id)
    assert account.change_cursor == "c1"


async def test_invalid_change_cursor_falls_back_to_full_listing(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A rejected change cursor resets every cursor and relists all folders."""
    mailbox.messages["inbox"] = [message("m0"), message("m1"), message("m2")]
    mailbox.expired_cursors.add("stale")
    account_id = await make_account(change_cursor="stale")

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INCREMENTAL))

    assert result.used_change_feed is False
    assert result.emails_synced == 3
    assert ("fetch_emails", ("inbox", None)) in mailbox.calls
    account = await _account(session_factory, account_id)
    assert account.change_cursor == "c0"
    jobs = await _jobs(session_factory, account_id)
    assert jobs[0].status == SyncJobStatus.COMPLETED.value


async def test_expired_folder_cursor_restarts_listing(
    use_case, session_factory, make_account, mailbox
) -> None:
    """An expired folder cursor restarts that folder from the beginning."""
    mailbox.supports_change_feed = False
    mailbox.messages["inbox"] = [message("m0"), message("m1")]
    account_id = await make_account()
    await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))
    mailbox.expired_cursors.add("2")
    mailbox.messages["inbox"].append(message("m2"))
    mailbox.page_size = 3

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INCREMENTAL))

    assert result.emails_synced == 3
    assert await _message_ids(session_factory, account_id) == {"m0", "m1", "m2"}
    folder = await _folder(session_factory, account_id, "inbox")
    assert folder.sync_cursor == "3"


async def test_trash_and_spam_are_not_synced_by_default(
    use_case, session_factory, make_account, mailbox
) -> None:
    """Folders classified as trash or spam are upserted disabled and never listed."""
    mailbox.folders = [
        ProviderFolder(id="inbox", name="Inbox"),
        ProviderFolder(id="bin", name="Deleted Items"),
        ProviderFolder(id="junk", name="whatever", type_hint="junkemail"),
        ProviderFolder(id="proj", name="Project X"),
    ]
    mailbox.messages["bin"] = [message("d1", folder_id="bin")]
    mailbox.messages["proj"] = [message("p1", folder_id="proj")]
    account_id = await make_account()

    result = await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    assert result.folders_synced == 2
    assert await _message_ids(session_factory, account_id) == {"p1"}
    trash = await _folder(session_factory, account_id, "bin")
    assert trash.folder_type == "trash"
    assert trash.sync_enabled is False
    junk = await _folder(session_factory, account_id, "junk")
    assert junk.folder_type == "spam"
    project = await _folder(session_factory, account_id, "proj")
    assert project.folder_type == "custom"
    assert project.sync_enabled is True


async def test_labelled_message_is_filed_under_its_system_folder(
    use_case, session_factory, make_account, mailbox
) -> None:
    """A message listed through a user label keeps its inbox filing."""
    mailbox.folders = [
        ProviderFolder(id="inbox", name="Inbox"),
        ProviderFolder(id="Label_1", name="Receipts"),
    ]
    mailbox.messages["inbox"] = [message("m1", labels=["INBOX", "Label_1"])]
    mailbox.messages["Label_1"] = [
        message("m1", folder_id="Label_1", labels=["INBOX", "Label_1"]),
        message("r1", folder_id="Label_1", labels=["Label_1"]),
    ]
    account_id = await make_account()

    await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    inbox = await _folder(session_factory, account_id, "inbox")
    receipts = await _folder(session_factory, account_id, "Label_1")
    async with session_factory() as session:
        result = await session.execute(
            select(EmailMessage.message_id, EmailMessage.folder_id, EmailMessage.folder_type)
            .where(EmailMessage.account_id == account_id)
            .order_by(EmailMessage.message_id)
        )
        rows = [tuple(row) for row in result.all()]
    assert rows == [("m1", inbox.id, "inbox"), ("r1", receipts.id, "custom")]


async def test_unknown_account_raises_without_job(use_case, session_factory) -> None:
    """A missing account is fatal and leaves no job row."""
    with pytest.raises(AccountNotFoundException):
        await use_case.execute(SyncRequest("missing-account"))

    async with session_factory() as session:
        result = await session.execute(select(SyncJob))
        assert result.scalars().all() == []


async def test_unsupported_family_fails_job(use_case, session_factory, make_account) -> None:
    """An unregistered provider family fails the job with UnsupportedProviderError."""
    account_id = await make_account(provider_family="carrier_pigeon")

    with pytest.raises(UnsupportedProviderError):
        await use_case.execute(SyncRequest(account_id))

    jobs = await _jobs(session_factory, account_id)
    assert jobs[0].status == SyncJobStatus.FAILED.value
    account = await _account(session_factory, account_id)
    assert account.status == AccountStatus.ACTIVE.value


async def test_progress_events_are_published(
    session_factory, adapters, make_account, mailbox
) -> None:
    """Stages go out in order; a failing run ends with a failed event."""
    publisher = AsyncMock()
    use_case = RunAccountSyncUseCase(session_factory, adapters, progress_publisher=publisher)
    mailbox.messages["inbox"] = [message("m1")]
    account_id = await make_account()

    await use_case.execute(SyncRequest(account_id, SyncMode.INITIAL))

    stages = [c.args[1] for c in publisher.publish_progress.await_args_list]
    assert stages[0] is SyncStage.STARTED
    assert SyncStage.EMAILS in stages
    assert stages[-2:] == [SyncStage.FINALIZING, SyncStage.COMPLETED]
    assert publisher.publish_progress.await_args.kwargs["emails_synced"] == 1

    publisher.reset_mock()
    mailbox.failures["fetch_folders"] = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        await use_case.execute(SyncRequest(account_id))

    last = publisher.publish_progress.await_args
    assert last.args[1] is SyncStage.FAILED
    assert last.kwargs["error"] == "boom"
