"""Gmail (history feed) adapter tests against a stubbed googleapiclient service."""

import base64
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from mailsync.infrastructure.exceptions import (
    CursorExpiredError,
    ProviderAuthError,
    TransientProviderError,
)
from mailsync.infrastructure.external.email.protocols import ProviderCredentials
from mailsync.infrastructure.external.email.providers import GmailProvider


class _Resp(dict):
    """Minimal httplib2-style response for HttpError."""

    def __init__(self, status: int) -> None:
        super().__init__(status=str(status))
        self.status = status
        self.reason = "error"


class _FakeBatch:
    """Batch request that answers each queued get() from a dict of messages."""

    def __init__(self, responses: dict[str, dict]) -> None:
        self._responses = responses
        self._queued: list[tuple[str, object]] = []

    def add(self, request, callback) -> None:
        self._queued.append((request, callback))

    def execute(self) -> None:
        for message_id, callback in self._queued:
            if message_id in self._responses:
                callback(message_id, self._responses[message_id], None)
            else:
                callback(message_id, None, RuntimeError("not found"))


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _provider(settings, service: MagicMock) -> GmailProvider:
    credentials = ProviderCredentials(
        provider_family="rest_history",
        email_address="user@example.com",
        secrets={"access_token": "gmail-token", "refresh_token": "rt"},
    )
    provider = GmailProvider(credentials, settings=settings)
    provider._service = service
    return provider


def _full_message() -> dict:
    return {
        "id": "m1",
        "threadId": "t1",
        "historyId": "120",
        "snippet": "Hello there",
        "labelIds": ["INBOX", "UNREAD", "STARRED"],
        "internalDate": "1714564800000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Hello"},
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com, Carol <carol@example.com>"},
                {"name": "Message-ID", "value": "<abc@mail.example.com>"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("plain body")}},
                {"mimeType": "text/html", "body": {"data": _b64("<p>html body</p>")}},
                {
                    "mimeType": "application/pdf",
                    "filename": "invoice.pdf",
                    "body": {"attachmentId": "att-1"},
                },
            ],
        },
    }


async def test_fetch_emails_parses_batch_results(settings) -> None:
    """Listed ids are fetched in one batch; items the batch fails on are dropped."""
    service = MagicMock()
    messages = service.users.return_value.messages.return_value
    messages.list.return_value.execute.return_value = {
        "messages": [{"id": "m1"}, {"id": "m2"}],
        "nextPageToken": "tok-2",
    }
    messages.get.side_effect = lambda **kwargs: kwargs["id"]
    service.new_batch_http_request.return_value = _FakeBatch({"m1": _full_message()})

    page = await _provider(settings, service).fetch_emails("INBOX")

    assert page.next_cursor == "tok-2"
    assert page.has_more is True
    assert [m.message_id for m in page.emails] == ["m1"]
    message = page.emails[0]
    assert message.folder_id == "INBOX"
    assert message.thread_id == "t1"
    assert message.subject == "Hello"
    assert message.from_address == "alice@example.com"
    assert message.to_addresses == ["bob@example.com", "carol@example.com"]
    assert message.body_text == "plain body"
    assert message.body_html == "<p>html body</p>"
    assert message.received_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    assert message.is_read is False
    assert message.is_starred is True
    assert message.has_attachments is True
    assert message.provider_metadata["rfc822_message_id"] == "<abc@mail.example.com>"

    list_kwargs = messages.list.call_args.kwargs
    assert list_kwargs["labelIds"] == ["INBOX"]
    assert "pageToken" not in list_kwargs


async def test_fetch_changes_pages_history_then_returns_new_history_id(settings) -> None:
    service = MagicMock()
    history = service.users.return_value.history.return_value
    pages = [
        {
            "history": [
                {"messagesAdded": [{"message": {"id": "d1"}}]},
                {"messagesDeleted": [{"message": {"id": "d1"}}]},
                {"labelsAdded": [{"message": {"id": "f1", "labelIds": ["INBOX", "STARRED"]}}]},
            ],
            "nextPageToken": "p2",
            "historyId": "150",
        },
        {
            "history": [
                {"labelsRemoved": [{"message": {"id": "f2", "labelIds": ["UNREAD", "TRASH"]}}]}
            ],
            "historyId": "175",
        },
    ]
    calls: list[dict] = []

    def list_history(**kwargs):
        calls.append(kwargs)
        request = MagicMock()
        request.execute.return_value = pages[len(calls) - 1]
        return request

    history.list.side_effect = list_history
    provider = _provider(settings, service)

    first = await provider.fetch_changes("100")
    assert first.added == []
    assert first.deleted == ["d1"]
    assert [(c.message_id, c.is_read, c.is_starred, c.folder_id) for c in first.flag_changed] == [
        ("f1", True, True, "INBOX")
    ]
    assert first.next_cursor == "100:p2"
    assert first.has_more is True
    service.new_batch_http_request.assert_not_called()

    second = await provider.fetch_changes(first.next_cursor)
    assert calls[1]["startHistoryId"] == "100"
    assert calls[1]["pageToken"] == "p2"
    assert [(c.message_id, c.is_read, c.folder_id) for c in second.flag_changed] == [
        ("f2", False, "TRASH")
    ]
    assert second.next_cursor == "175"
    assert second.has_more is False


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (404, CursorExpiredError),
        (401, ProviderAuthError),
        (500, TransientProviderError),
        (429, TransientProviderError),
    ],
)
async def test_fetch_changes_translates_http_errors(settings, status: int, expected: type) -> None:
    service = MagicMock()
    request = service.users.return_value.history.return_value.list.return_value
    request.execute.side_effect = HttpError(_Resp(status), b"")

    with pytest.raises(expected):
        await _provider(settings, service).fetch_changes("100")


async def test_current_change_cursor_reads_profile_history_id(settings) -> None:
    service = MagicMock()
    profile = service.users.return_value.getProfile.return_value
    profile.execute.return_value = {"emailAddress": "user@example.com", "historyId": 4321}

    assert await _provider(settings, service).current_change_cursor() == "4321"


async def test_fetch_folders_skips_attribute_labels(settings) -> None:
    service = MagicMock()
    labels = service.users.return_value.labels.return_value
    labels.list.return_value.execute.return_value = {
        "labels": [
            {"id": "INBOX", "name": "INBOX", "type": "system"},
            {"id": "UNREAD", "name": "UNREAD", "type": "system"},
            {"id": "CATEGORY_SOCIAL", "name": "CATEGORY_SOCIAL", "type": "system"},
            {"id": "Label_7", "name": "Receipts", "type": "user"},
        ]
    }
    labels.get.return_value.execute.return_value = {"messagesTotal": 12, "messagesUnread": 3}

    folders = await _provider(settings, service).fetch_folders()

    assert [(f.id, f.name, f.type_hint) for f in folders] == [
        ("INBOX", "INBOX", "INBOX"),
        ("Label_7", "Receipts", None),
    ]
    assert folders[0].total_messages == 12
    assert folders[0].unread_messages == 3
