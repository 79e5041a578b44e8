"""Incremental change sync: apply an account change feed to the local store."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos.sync import ChangeSyncResult
from mailsync.application.use_cases.sync.message_store import (
    FolderRef,
    folder_type_from_labels,
    store_messages,
)
from mailsync.infrastructure.exceptions import CursorExpiredError
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    FlagChange,
    MailProviderAdapter,
    ProviderMessage,
)
from mailsync.infrastructure.persistence.models.email_folder import EmailFolder
from mailsync.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailFolderRepository,
    EmailMessageRepository,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced

logger = get_logger(__name__)


class _FolderIndex:
    """Resolves provider folder ids and labels to local folders."""

    def __init__(self, folders: list[EmailFolder]) -> None:
        self._by_external = {f.external_id: f for f in folders}
        self._enabled_by_type: dict[str, EmailFolder] = {}
        for folder in folders:
            if folder.sync_enabled:
                self._enabled_by_type.setdefault(folder.folder_type, folder)

    def for_added(self, message: ProviderMessage) -> FolderRef | None:
        """Enabled folder for a new message; None means skip it."""
        folder = self._by_external.get(message.folder_id) if message.folder_id else None
        if folder is None:
            derived = folder_type_from_labels(message.labels)
            folder = self._enabled_by_type.get(derived.value) if derived else None
        if folder is None or not folder.sync_enabled:
            return None
        return FolderRef(id=folder.id, folder_type=folder.folder_type)

    def for_flag_change(self, change: FlagChange) -> FolderRef | None:
        folder = self._by_external.get(change.folder_id) if change.folder_id else None
        if folder is None and change.labels is not None:
            derived = folder_type_from_labels(change.labels)
            folder = self._enabled_by_type.get(derived.value) if derived else None
        if folder is None:
            return None
        return FolderRef(id=folder.id, folder_type=folder.folder_type)


class IncrementalChangeSync:
    """Pages through adapter.fetch_changes from the account cursor.

    Each page is applied in its own transaction; the account cursor only
    moves once every page has been applied, so an interrupted pass replays
    from the old cursor. Every operation is idempotent, which makes the
    replay (and duplicate or out-of-order records) harmless.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @traced("sync.incremental_change_sync")
    async def run(self, account_id: str, adapter: MailProviderAdapter) -> ChangeSyncResult:
        async with self._session_factory() as session:
            account = await EmailAccountRepository(session).get_by_id(account_id)
            cursor = account.change_cursor if account else None
            folders = await EmailFolderRepository(session).list_for_account(account_id)
        if not cursor:
            return ChangeSyncResult(needs_full_sync=True)

        index = _FolderIndex(folders)
        result = ChangeSyncResult()
        try:
            while True:
                page = await adapter.fetch_changes(cursor)
                async with self._session_factory() as session, session.begin():
                    await self._apply_page(session, account_id, page, index, result)
                if page.next_cursor:
                    cursor = page.next_cursor
                if not page.has_more:
                    break
        except CursorExpiredError as e:
            logger.warning("Change cursor for account %s rejected: %s", account_id, e)
            return ChangeSyncResult(cursor_invalid=True)

        async with self._session_factory() as session, session.begin():
            await EmailAccountRepository(session).set_change_cursor(account_id, cursor)
        result.new_cursor = cursor
        add_span_attributes(account_id=account_id, cursor_kind="account")
        logger.info(
            "Change sync for %s: added=%d deleted=%d flags=%d skipped=%d failed=%d",
            account_id,
            result.added,
            result.deleted,
            result.flags_updated,
            result.skipped,
            result.failed,
        )
        return result

    async def _apply_page(
        self,
        session: AsyncSession,
        account_id: str,
        page: ChangePage,
        index: _FolderIndex,
        result: ChangeSyncResult,
    ) -> None:
        # Adds, then flag changes, then deletes (added-then-deleted ends up deleted).
        messages = EmailMessageRepository(session)
        stored = await store_messages(session, account_id, page.added, index.for_added)
        result.added += stored.stored
        result.failed += stored.failed
        result.skipped += stored.skipped
        for change in page.flag_changed:
            folder = index.for_flag_change(change)
            result.flags_updated += await messages.update_flags(
                account_id,
                change.message_id,
                is_read=change.is_read,
                is_starred=change.is_starred,
                folder_id=folder.id if folder else None,
                folder_type=folder.folder_type if folder else None,
            )
        if page.deleted:
            result.deleted += await messages.delete_by_message_ids(account_id, page.deleted)
