"""Sync orchestrator: one end-to-end sync attempt for one account."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import FolderSyncResult, SyncRequest, SyncResult
from mailsync.application.interfaces import IProgressPublisher
from mailsync.application.services.error_classifier import is_auth_error
from mailsync.application.services.folder_classifier import FolderClassifier
from mailsync.application.use_cases.sync.incremental_change_sync import IncrementalChangeSync
from mailsync.application.use_cases.sync.message_store import (
    FolderRef,
    folder_type_from_labels,
    store_messages,
)
from mailsync.domain.enums import AccountStatus, SyncJobStatus, SyncMode
from mailsync.domain.exceptions import (
    AccountNotFoundException,
    AccountRequiresReauthException,
)
from mailsync.infrastructure.exceptions import CursorExpiredError
from mailsync.infrastructure.external.email.protocols import (
    MailProviderAdapter,
    ProviderMessage,
)
from mailsync.infrastructure.messaging.redis_pubsub import SyncStage
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailFolderRepository,
    SyncJobRepository,
)
from mailsync.infrastructure.services.account_adapter_service import (
    AccountAdapterService,
    AccountSnapshot,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, add_span_event, traced
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)

FOLDER_PROGRESS_SPAN = 90
FINALIZING_PROGRESS = 95


@dataclass(frozen=True)
class _FolderSnapshot:
    id: str
    external_id: str
    folder_type: str
    sync_cursor: str | None

    @property
    def ref(self) -> FolderRef:
        return FolderRef(id=self.id, folder_type=self.folder_type)


def _label_resolver(
    folders: list[_FolderSnapshot], listed: _FolderSnapshot
) -> Callable[[ProviderMessage], FolderRef]:
    """Files a listed message under the enabled folder its system labels imply.

    A message carrying INBOX and a user label is stored as inbox mail even
    when it is listed through the user label. Messages without a folder
    label stay in the folder being listed.
    """
    by_type: dict[str, _FolderSnapshot] = {}
    for folder in folders:
        by_type.setdefault(folder.folder_type, folder)

    def resolve(message: ProviderMessage) -> FolderRef:
        derived = folder_type_from_labels(message.labels)
        folder = by_type.get(derived.value) if derived else None
        return (folder or listed).ref

    return resolve


class RunAccountSyncUseCase:
    """Runs one sync attempt: token refresh, folders, emails, final state.

    Every state transition and every page commits in its own short
    transaction. A folder's cursor is written only after its last page, so a
    crash mid-folder restarts that folder from its previous checkpoint and
    the replayed pages are absorbed by the upsert key.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: AccountAdapterService,
        *,
        classifier: FolderClassifier | None = None,
        change_sync: IncrementalChangeSync | None = None,
        progress_publisher: IProgressPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._adapters = adapters
        self._classifier = classifier or FolderClassifier()
        self._change_sync = change_sync or IncrementalChangeSync(session_factory)
        self._publisher = progress_publisher
        self._clock = clock

    @traced("sync.run_account_sync")
    async def execute(self, request: SyncRequest, *, attempt: int = 1) -> SyncResult:
        """Run one attempt.

        Raises:
            AccountNotFoundException: No such account (no job row is written).
            AccountRequiresReauthException: The account is halted in status
                error (no job row is written).
            ProviderAuthError: Credentials rejected; the account is set to error.
            Exception: Any other failure, after the job is finalized as failed.
        """
        account_id = request.account_id
        add_span_attributes(
            account_id=account_id,
            sync_mode=request.sync_mode.value,
            trigger=request.trigger.value,
            attempt=attempt,
        )
        async with self._session_factory() as session, session.begin():
            account_model = await EmailAccountRepository(session).get_by_id(account_id)
            if account_model is None:
                raise AccountNotFoundException(account_id)
            if account_model.status == AccountStatus.ERROR.value:
                raise AccountRequiresReauthException(account_id)
            account = AccountSnapshot.from_model(account_model)
            job = await SyncJobRepository(session).start(
                account_id=account_id,
                sync_mode=request.sync_mode.value,
                trigger=request.trigger.value,
                attempt=attempt,
                started_at=self._clock(),
            )
            await EmailAccountRepository(session).mark_sync_started(account_id)
            job_id = job.id
        logger.info(
            "Sync started: account=%s mode=%s trigger=%s attempt=%d job=%s",
            account_id,
            request.sync_mode.value,
            request.trigger.value,
            attempt,
            job_id,
        )
        await self._publish(account_id, SyncStage.STARTED, 0, "Sync started")

        try:
            result = await self._run(request, account, job_id)
        except (Exception, asyncio.CancelledError) as e:
            await self._record_failure(account_id, job_id, e)
            raise

        async with self._session_factory() as session, session.begin():
            now = self._clock()
            await EmailAccountRepository(session).mark_sync_succeeded(account_id, now)
            await SyncJobRepository(session).finish(
                job_id,
                status=SyncJobStatus.COMPLETED,
                completed_at=now,
                emails_synced=result.emails_synced,
            )
        await self._publish(
            account_id,
            SyncStage.COMPLETED,
            100,
            "Sync completed",
            emails_synced=result.emails_synced,
        )
        logger.info(
            "Sync completed: account=%s emails=%d folders=%d change_feed=%s",
            account_id,
            result.emails_synced,
            result.folders_synced,
            result.used_change_feed,
        )
        return result

    async def _run(
        self, request: SyncRequest, account: AccountSnapshot, job_id: str
    ) -> SyncResult:
        credentials = self._adapters.credentials_for(account)
        adapter = self._adapters.create_adapter(credentials)
        try:
            await self._adapters.refresh_if_needed(credentials, adapter)

            await self._publish(account.id, SyncStage.FOLDERS, 0, "Syncing folders")
            folders = await self._sync_folders(account.id, adapter)

            result = SyncResult(
                account_id=account.id,
                job_id=job_id,
                sync_mode=request.sync_mode,
                emails_synced=0,
                folders_synced=len(folders),
            )
            resume_folders = request.sync_mode is SyncMode.INCREMENTAL
            if (
                request.sync_mode is SyncMode.INCREMENTAL
                and account.change_cursor
                and adapter.supports_change_feed
            ):
                change = await self._change_sync.run(account.id, adapter)
                if change.cursor_invalid:
                    logger.warning(
                        "Change cursor invalid for %s; falling back to full listing", account.id
                    )
                    add_span_event("change_cursor_invalid", {"account_id": account.id})
                    folders = await self._reset_cursors(account.id)
                    resume_folders = False
                elif not change.needs_full_sync:
                    result.emails_synced = change.emails_synced
                    result.used_change_feed = True

            if not result.used_change_feed:
                await self._full_listing(account.id, adapter, folders, resume_folders, result)

            await self._set_progress(account.id, FINALIZING_PROGRESS)
            await self._publish(
                account.id,
                SyncStage.FINALIZING,
                FINALIZING_PROGRESS,
                "Finalizing",
                emails_synced=result.emails_synced,
            )
            return result
        finally:
            await adapter.aclose()

    async def _sync_folders(
        self, account_id: str, adapter: MailProviderAdapter
    ) -> list[_FolderSnapshot]:
        """Upsert every provider folder; return the enabled ones."""
        provider_folders = await adapter.fetch_folders()
        async with self._session_factory() as session, session.begin():
            repo = EmailFolderRepository(session)
            for folder in provider_folders:
                folder_type = self._classifier.classify(folder.name, folder.type_hint)
                await repo.upsert(
                    account_id=account_id,
                    external_id=folder.id,
                    name=folder.name,
                    folder_type=folder_type.value,
                    total_count=folder.total_messages,
                    unread_count=folder.unread_messages,
                    sync_enabled_default=self._classifier.should_sync_by_default(folder_type),
                )
            enabled = await repo.list_enabled(account_id)
        logger.info(
            "Folders synced for %s: %d listed, %d enabled",
            account_id,
            len(provider_folders),
            len(enabled),
        )
        return [
            _FolderSnapshot(f.id, f.external_id, f.folder_type, f.sync_cursor) for f in enabled
        ]

    async def _reset_cursors(self, account_id: str) -> list[_FolderSnapshot]:
        async with self._session_factory() as session, session.begin():
            await EmailAccountRepository(session).set_change_cursor(account_id, None)
            repo = EmailFolderRepository(session)
            await repo.clear_cursors(account_id)
            enabled = await repo.list_enabled(account_id)
        return [_FolderSnapshot(f.id, f.external_id, f.folder_type, None) for f in enabled]

    async def _full_listing(
        self,
        account_id: str,
        adapter: MailProviderAdapter,
        folders: list[_FolderSnapshot],
        resume: bool,
        result: SyncResult,
    ) -> None:
        # Captured before listing so changes made during the listing are replayed next time.
        baseline_cursor = (
            await adapter.current_change_cursor() if adapter.supports_change_feed else None
        )
        total = len(folders)
        for i, folder in enumerate(folders):
            progress = math.floor(i / total * FOLDER_PROGRESS_SPAN)
            await self._set_progress(account_id, progress)
            await self._publish(
                account_id,
                SyncStage.EMAILS,
                progress,
                f"Syncing folder {i + 1} of {total}",
                emails_synced=result.emails_synced,
            )
            folder_result = await self._sync_folder(
                account_id, adapter, folder, _label_resolver(folders, folder), resume
            )
            result.folders.append(folder_result)
            result.emails_synced += folder_result.emails_synced
        if baseline_cursor:
            async with self._session_factory() as session, session.begin():
                await EmailAccountRepository(session).set_change_cursor(
                    account_id, baseline_cursor
                )

    @traced("sync.folder")
    async def _sync_folder(
        self,
        account_id: str,
        adapter: MailProviderAdapter,
        folder: _FolderSnapshot,
        resolve_folder: Callable[[ProviderMessage], FolderRef],
        resume: bool,
    ) -> FolderSyncResult:
        """Page through one folder; checkpoint its cursor after the last page."""
        add_span_attributes(account_id=account_id, folder_id=folder.id)
        result = FolderSyncResult(folder_id=folder.id, external_id=folder.external_id)
        cursor = folder.sync_cursor if resume else None
        restarted = False
        while True:
            try:
                page = await adapter.fetch_emails(folder.external_id, cursor)
            except CursorExpiredError:
                if cursor is None or restarted:
                    raise
                logger.warning(
                    "Cursor for folder %s expired; relisting from the start", folder.external_id
                )
                cursor = None
                restarted = True
                continue
            async with self._session_factory() as session, session.begin():
                stored = await store_messages(session, account_id, page.emails, resolve_folder)
            result.pages += 1
            result.emails_synced += stored.stored
            result.emails_failed += stored.failed
            cursor = page.next_cursor
            if not page.has_more:
                break
        async with self._session_factory() as session, session.begin():
            await EmailFolderRepository(session).set_cursor(folder.id, cursor, self._clock())
        logger.debug(
            "Folder %s synced: %d emails, %d failed, %d pages",
            folder.external_id,
            result.emails_synced,
            result.emails_failed,
            result.pages,
        )
        return result

    async def _set_progress(self, account_id: str, progress: int) -> None:
        async with self._session_factory() as session, session.begin():
            await EmailAccountRepository(session).set_progress(account_id, progress)

    async def _record_failure(self, account_id: str, job_id: str, exc: BaseException) -> None:
        error = str(exc) or exc.__class__.__name__
        auth_failure = is_auth_error(exc)
        async with self._session_factory() as session, session.begin():
            now = self._clock()
            await EmailAccountRepository(session).mark_sync_failed(
                account_id, error, now, auth_failure=auth_failure
            )
            await SyncJobRepository(session).finish(
                job_id, status=SyncJobStatus.FAILED, completed_at=now, error=error
            )
        logger.error(
            "Sync failed: account=%s job=%s auth_failure=%s error=%s",
            account_id,
            job_id,
            auth_failure,
            error,
        )
        await self._publish(account_id, SyncStage.FAILED, 0, "Sync failed", error=error)

    async def _publish(
        self,
        account_id: str,
        stage: SyncStage,
        progress: int,
        message: str,
        *,
        emails_synced: int = 0,
        error: str | None = None,
    ) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish_progress(
            account_id,
            stage,
            progress,
            message,
            emails_synced=emails_synced,
            error=error,
        )
