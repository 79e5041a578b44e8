"""Message store tests: idempotent upsert keyed on (account_id, message_id)."""

import pytest
from sqlalchemy import func, select, update

from mailsync.application.use_cases.sync.message_store import FolderRef, store_messages
from mailsync.infrastructure.persistence.models import EmailFolder, EmailMessage
from mailsync.infrastructure.persistence.repositories import EmailMessageRepository
from tests.fakes import message


@pytest.fixture
async def inbox(session_factory, make_account) -> tuple[str, FolderRef]:
    account_id = await make_account()
    async with session_factory() as session, session.begin():
        folder = EmailFolder(
            account_id=account_id, external_id="inbox", name="Inbox", folder_type="inbox"
        )
        session.add(folder)
        await session.flush()
        return account_id, FolderRef(id=folder.id, folder_type="inbox")


async def _store(session_factory, account_id: str, folder: FolderRef, messages):
    async with session_factory() as session, session.begin():
        return await store_messages(session, account_id, messages, lambda _: folder)


async def _get(session_factory, account_id: str, message_id: str) -> EmailMessage:
    async with session_factory() as session:
        return await EmailMessageRepository(session).get_by_message_id(account_id, message_id)


async def test_storing_same_message_twice_keeps_one_row(session_factory, inbox) -> None:
    """Replaying a page neither duplicates nor touches the stored row."""
    account_id, folder = inbox
    await _store(session_factory, account_id, folder, [message("m1")])
    first = await _get(session_factory, account_id, "m1")

    result = await _store(session_factory, account_id, folder, [message("m1")])

    assert result.stored == 1
    async with session_factory() as session:
        count = await session.scalar(
            select(func.count())
            .select_from(EmailMessage)
            .where(EmailMessage.account_id == account_id)
        )
    assert count == 1
    second = await _get(session_factory, account_id, "m1")
    assert second.id == first.id
    assert second.updated_at == first.updated_at


async def test_update_refreshes_synced_fields_and_keeps_category(session_factory, inbox) -> None:
    """Changed provider fields are written; a category set by enrichment survives."""
    account_id, folder = inbox
    await _store(session_factory, account_id, folder, [message("m1", subject="Draft title")])
    async with session_factory() as session, session.begin():
        await session.execute(
            update(EmailMessage)
            .where(EmailMessage.message_id == "m1")
            .values(category="newsletter")
        )

    await _store(
        session_factory, account_id, folder, [message("m1", subject="Final title", is_read=True)]
    )

    stored = await _get(session_factory, account_id, "m1")
    assert stored.subject == "Final title"
    assert stored.is_read is True
    assert stored.category == "newsletter"


async def test_new_message_gets_folder_type_as_category(session_factory, inbox) -> None:
    """On insert, category starts as the folder type."""
    account_id, folder = inbox
    await _store(session_factory, account_id, folder, [message("m1")])

    stored = await _get(session_factory, account_id, "m1")
    assert stored.category == "inbox"
    assert stored.folder_id == folder.id
    assert stored.to_addresses == ["user@example.com"]
    assert stored.received_at is not None


async def test_message_without_id_is_counted_as_failed(session_factory, inbox) -> None:
    """Messages that cannot be normalized are skipped without aborting the page."""
    account_id, folder = inbox

    result = await _store(
        session_factory,
        account_id,
        folder,
        [message("  "), message("m2", cc_addresses=[None]), message("m3")],
    )

    assert result.stored == 1
    assert result.failed == 2
    assert await _get(session_factory, account_id, "m3") is not None


async def test_unresolved_folder_is_skipped(session_factory, inbox) -> None:
    """resolve_folder returning None skips the message."""
    account_id, _ = inbox
    async with session_factory() as session, session.begin():
        result = await store_messages(session, account_id, [message("m1")], lambda _: None)

    assert result.skipped == 1
    assert await _get(session_factory, account_id, "m1") is None


async def test_long_subject_is_truncated(session_factory, inbox) -> None:
    """Subjects are capped at the RFC 5322 line limit."""
    account_id, folder = inbox
    await _store(session_factory, account_id, folder, [message("m1", subject="x" * 2000)])

    stored = await _get(session_factory, account_id, "m1")
    assert len(stored.subject) == 998
