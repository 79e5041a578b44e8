"""IMAP adapter tests against a scripted aioimaplib client."""

from datetime import UTC, datetime

import pytest
from aioimaplib import Response

from mailsync.infrastructure.exceptions import CursorExpiredError, ProviderError
from mailsync.infrastructure.external.email.protocols import ProviderCredentials
from mailsync.infrastructure.external.email.providers import IMAPProvider

RAW_MESSAGE = (
    b"Message-ID: <imap-1@example.com>\r\n"
    b"From: Alice <alice@example.com>\r\n"
    b"To: user@example.com\r\n"
    b"Subject: Quarterly report\r\n"
    b"Date: Wed, 01 May 2024 14:00:00 +0200\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Numbers attached.\r\n"
)


class FakeIMAPClient:
    """Answers IMAP commands from canned responses and records the calls."""

    def __init__(self, *, uidvalidity: int = 7, uids: list[int] | None = None) -> None:
        self.uidvalidity = uidvalidity
        self.uids = uids or []
        self.calls: list[tuple] = []

    async def list(self, reference, pattern):
        self.calls.append(("list", reference, pattern))
        return Response(
            "OK",
            [
                b'(\\HasNoChildren) "/" "INBOX"',
                b'(\\HasNoChildren \\Sent) "/" "Sent Items"',
                b'(\\Noselect \\HasChildren) "/" "[Gmail]"',
                b"LIST completed",
            ],
        )

    async def status(self, mailbox, names):
        self.calls.append(("status", mailbox))
        return Response(
            "OK",
            [
                f"{mailbox} (MESSAGES 4 UNSEEN 1 UIDVALIDITY {self.uidvalidity})".encode(),
                b"STATUS completed",
            ],
        )

    async def select(self, mailbox):
        self.calls.append(("select", mailbox))
        return Response("OK", [b"SELECT completed"])

    async def uid_search(self, criteria):
        self.calls.append(("uid_search", criteria))
        return Response(
            "OK", [" ".join(str(u) for u in self.uids).encode(), b"SEARCH completed"]
        )

    async def uid(self, command, uid_set, items):
        self.calls.append(("uid", command, uid_set))
        lines: list = []
        for uid in uid_set.split(","):
            lines.append(
                f"1 FETCH (UID {uid} FLAGS (\\Seen) BODY[] {{{len(RAW_MESSAGE)}}}".encode()
            )
            lines.append(bytearray(RAW_MESSAGE.replace(b"imap-1", f"imap-{uid}".encode())))
            lines.append(b")")
        lines.append(b"FETCH completed")
        return Response("OK", lines)

    async def logout(self):
        self.calls.append(("logout",))
        return Response("OK", [])


def _provider(settings, client: FakeIMAPClient) -> IMAPProvider:
    credentials = ProviderCredentials(
        provider_family="legacy_imap",
        email_address="user@example.com",
        secrets={"username": "user@example.com", "password": "app-password"},
        connection_params={"imap_server": "imap.example.com"},
    )
    provider = IMAPProvider(credentials, settings=settings)
    provider._client = client
    return provider


async def test_fetch_folders_skips_noselect_and_reads_special_use(settings) -> None:
    provider = _provider(settings, FakeIMAPClient())

    folders = await provider.fetch_folders()

    assert [(f.id, f.type_hint) for f in folders] == [("INBOX", None), ("Sent Items", "sent")]
    assert folders[0].total_messages == 4
    assert folders[0].unread_messages == 1


async def test_fetch_emails_pages_by_uid_and_checkpoints(settings) -> None:
    settings = settings.model_copy(update={"sync_page_size": 2})
    client = FakeIMAPClient(uids=[11, 12, 13])
    provider = _provider(settings, client)

    page = await provider.fetch_emails("INBOX", "7:10")

    assert ("uid_search", "UID 11:*") in client.calls
    assert ("uid", "fetch", "11,12") in client.calls
    assert page.next_cursor == "7:12"
    assert page.has_more is True
    first = page.emails[0]
    assert first.message_id == "<imap-11@example.com>"
    assert first.from_address == "alice@example.com"
    assert first.subject == "Quarterly report"
    assert first.body_text.strip() == "Numbers attached."
    assert first.sent_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    assert first.is_read is True
    assert first.provider_metadata["imap_uid"] == "11"


async def test_fetch_emails_with_nothing_new_keeps_checkpoint(settings) -> None:
    # "UID n:*" returns the highest UID even when it is below n.
    client = FakeIMAPClient(uids=[10])
    page = await _provider(settings, client).fetch_emails("INBOX", "7:10")

    assert page.emails == []
    assert page.next_cursor == "7:10"
    assert page.has_more is False
    assert not any(call[0] == "uid" for call in client.calls)


async def test_uidvalidity_change_expires_cursor(settings) -> None:
    provider = _provider(settings, FakeIMAPClient(uidvalidity=8))

    with pytest.raises(CursorExpiredError):
        await provider.fetch_emails("INBOX", "7:10")


async def test_malformed_cursor_expires(settings) -> None:
    with pytest.raises(CursorExpiredError):
        await _provider(settings, FakeIMAPClient()).fetch_emails("INBOX", "not-a-cursor")


async def test_no_change_feed(settings) -> None:
    provider = _provider(settings, FakeIMAPClient())

    assert provider.supports_change_feed is False
    assert await provider.current_change_cursor() is None
    with pytest.raises(NotImplementedError):
        await provider.fetch_changes("anything")


async def test_missing_server_is_provider_error(settings) -> None:
    credentials = ProviderCredentials(
        provider_family="legacy_imap",
        email_address="user@example.com",
        secrets={"password": "app-password"},
    )
    with pytest.raises(ProviderError):
        await IMAPProvider(credentials, settings=settings).fetch_folders()


async def test_aclose_logs_out(settings) -> None:
    client = FakeIMAPClient()
    provider = _provider(settings, client)

    await provider.aclose()

    assert client.calls == [("logout",)]
    assert provider._client is None
