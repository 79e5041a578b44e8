"""Gmail provider using Gmail API with batch and history support."""

from __future__ import annotations

import asyncio
import base64
from email.utils import getaddresses
from typing import Any

import httpx
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailsync.core.config import Settings
from mailsync.infrastructure.exceptions import (
    CursorExpiredError,
    ProviderAuthError,
    ProviderError,
    TransientProviderError,
)
from mailsync.infrastructure.external.email.oauth_drivers import GmailDriver
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    EmailPage,
    FlagChange,
    ProviderCredentials,
    ProviderFolder,
    ProviderMessage,
    TokenRefreshResult,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import from_timestamp_ms_utc

logger = get_logger(__name__)

BATCH_SIZE = 100
HISTORY_TYPES = ["messageAdded", "messageDeleted", "labelAdded", "labelRemoved"]
# Labels that are message attributes rather than folders.
NON_FOLDER_LABELS = frozenset({"UNREAD", "STARRED", "IMPORTANT", "CHAT"})
# Order in which a message's labels decide its folder.
FOLDER_LABEL_PRIORITY = ("DRAFT", "SENT", "TRASH", "SPAM", "INBOX")
_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def _is_folder_label(label_id: str) -> bool:
    return label_id not in NON_FOLDER_LABELS and not label_id.startswith("CATEGORY_")


def _folder_for_labels(label_ids: list[str]) -> str | None:
    for label in FOLDER_LABEL_PRIORITY:
        if label in label_ids:
            return label
    for label in label_ids:
        if _is_folder_label(label):
            return label
    return None


def _decode_body(data: str | None) -> str | None:
    if not data:
        return None
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _find_body(payload: dict[str, Any], mime_type: str) -> str | None:
    if payload.get("mimeType") == mime_type and not payload.get("filename"):
        body = _decode_body((payload.get("body") or {}).get("data"))
        if body is not None:
            return body
    for part in payload.get("parts") or []:
        found = _find_body(part, mime_type)
        if found is not None:
            return found
    return None


def _has_attachments(payload: dict[str, Any]) -> bool:
    for part in payload.get("parts") or []:
        if part.get("filename") or _has_attachments(part):
            return True
    return False


def _addresses(value: str) -> list[str]:
    return [addr for _, addr in getaddresses([value]) if addr]


def _http_error_reason(error: HttpError) -> str | None:
    details = getattr(error, "error_details", None)
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return details[0].get("reason")
    return None


class GmailProvider:
    """Adapter for the rest_history family (Gmail API).

    Folders are Gmail labels. The change cursor is a history id; while a
    history round is being paged it is "<startHistoryId>:<pageToken>".
    """

    PROVIDER_NAME = "gmail"

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._http_client = http_client
        self._access_token: str | None = credentials.secrets.get("access_token")
        self._service: Any = None

    @property
    def supports_change_feed(self) -> bool:
        return True

    async def _get_service(self) -> Any:
        if self._service is None:
            creds = Credentials(token=self._access_token)
            self._service = await asyncio.to_thread(
                build, "gmail", "v1", credentials=creds, cache_discovery=False
            )
        return self._service

    async def _execute(self, request: Any) -> dict[str, Any]:
        """Run a googleapiclient request off the event loop, translating errors."""
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise self._translate_http_error(e) from e
        except RefreshError as e:
            raise ProviderAuthError(
                f"Gmail credentials rejected: {e}", provider=self.PROVIDER_NAME
            ) from e
        except (TimeoutError, ConnectionError) as e:
            raise TransientProviderError(
                f"Gmail network error: {e}", provider=self.PROVIDER_NAME
            ) from e

    def _translate_http_error(self, error: HttpError) -> ProviderError:
        status = error.resp.status
        reason = _http_error_reason(error)
        message = f"Gmail API error {status}" + (f" ({reason})" if reason else "")
        if status == 429 or status >= 500 or (status == 403 and reason in _RATE_LIMIT_REASONS):
            return TransientProviderError(message, provider=self.PROVIDER_NAME, status_code=status)
        if status in (401, 403):
            return ProviderAuthError(message, provider=self.PROVIDER_NAME, status_code=status)
        return ProviderError(message, provider=self.PROVIDER_NAME, status_code=status)

    @traced("gmail.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        service = await self._get_service()
        result = await self._execute(service.users().labels().list(userId="me"))
        folders: list[ProviderFolder] = []
        for label in result.get("labels", []):
            label_id = label["id"]
            if not _is_folder_label(label_id):
                continue
            detail = await self._execute(service.users().labels().get(userId="me", id=label_id))
            folders.append(
                ProviderFolder(
                    id=label_id,
                    name=label.get("name") or label_id,
                    total_messages=int(detail.get("messagesTotal") or 0),
                    unread_messages=int(detail.get("messagesUnread") or 0),
                    type_hint=label_id if label.get("type") == "system" else None,
                )
            )
        return folders

    @traced("gmail.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> EmailPage:
        """One page of messages.list for a label; the cursor is the pageToken."""
        service = await self._get_service()
        params: dict[str, Any] = {
            "userId": "me",
            "labelIds": [folder_id],
            "maxResults": self._settings.sync_page_size,
        }
        if cursor:
            params["pageToken"] = cursor
        try:
            result = await self._execute(service.users().messages().list(**params))
        except ProviderError as e:
            if cursor and e.status_code in (400, 404):
                raise CursorExpiredError(
                    f"Gmail page token rejected for label {folder_id}", provider=self.PROVIDER_NAME
                ) from e
            raise
        message_ids = [m["id"] for m in result.get("messages", [])]
        emails = await self._fetch_messages_batch(message_ids, folder_id=folder_id)
        next_token = result.get("nextPageToken")
        return EmailPage(emails=emails, next_cursor=next_token, has_more=bool(next_token))

    async def _fetch_messages_batch(
        self, message_ids: list[str], *, folder_id: str | None = None
    ) -> list[ProviderMessage]:
        """Fetch multiple messages via batch API."""
        if not message_ids:
            return []
        service = await self._get_service()
        messages: list[ProviderMessage] = []
        for batch_start in range(0, len(message_ids), BATCH_SIZE):
            batch_ids = message_ids[batch_start : batch_start + BATCH_SIZE]
            batch_results: dict[str, dict] = {}

            def add_callback(msg_id: str):
                def cb(
                    request_id: str,
                    response: dict[str, Any],
                    exception: Exception | None,
                ) -> None:
                    if exception:
                        logger.warning("Gmail batch item %s: %s", msg_id, exception)
                    else:
                        batch_results[msg_id] = response

                return cb

            batch = service.new_batch_http_request()
            for msg_id in batch_ids:
                batch.add(
                    service.users().messages().get(userId="me", id=msg_id, format="full"),
                    callback=add_callback(msg_id),
                )
            await self._execute(batch)
            for msg_id in batch_ids:
                if msg_id in batch_results:
                    messages.append(self._parse_message(batch_results[msg_id], folder_id))
        return messages

    def _parse_message(self, msg: dict[str, Any], folder_id: str | None) -> ProviderMessage:
        """Parse Gmail API message into ProviderMessage."""
        payload = msg.get("payload") or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        label_ids = msg.get("labelIds", [])
        internal_date = msg.get("internalDate")
        return ProviderMessage(
            message_id=msg["id"],
            thread_id=msg.get("threadId"),
            folder_id=folder_id or _folder_for_labels(label_ids),
            subject=headers.get("subject", ""),
            from_address=next(iter(_addresses(headers.get("from", ""))), ""),
            to_addresses=_addresses(headers.get("to", "")),
            cc_addresses=_addresses(headers.get("cc", "")),
            snippet=msg.get("snippet"),
            body_text=_find_body(payload, "text/plain"),
            body_html=_find_body(payload, "text/html"),
            received_at=from_timestamp_ms_utc(int(internal_date)) if internal_date else None,
            is_read="UNREAD" not in label_ids,
            is_starred="STARRED" in label_ids,
            is_draft="DRAFT" in label_ids,
            has_attachments=_has_attachments(payload),
            labels=label_ids,
            provider_metadata={
                "rfc822_message_id": headers.get("message-id"),
                "history_id": msg.get("historyId"),
            },
        )

    @traced("gmail.current_change_cursor")
    async def current_change_cursor(self) -> str | None:
        """Return current history ID from profile."""
        service = await self._get_service()
        profile = await self._execute(service.users().getProfile(userId="me"))
        history_id = profile.get("historyId")
        return str(history_id) if history_id else None

    @traced("gmail.fetch_changes")
    async def fetch_changes(self, cursor: str) -> ChangePage:
        """One page of history.list since the cursor's history id.

        Raises:
            CursorExpiredError: History id no longer retained (404).
        """
        start_history_id, _, page_token = cursor.partition(":")
        service = await self._get_service()
        params: dict[str, Any] = {
            "userId": "me",
            "startHistoryId": start_history_id,
            "historyTypes": HISTORY_TYPES,
            "maxResults": self._settings.sync_page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        try:
            result = await self._execute(service.users().history().list(**params))
        except ProviderError as e:
            if e.status_code in (404, 410):
                raise CursorExpiredError(
                    f"Gmail history ID {start_history_id} has expired.", provider=self.PROVIDER_NAME
                ) from e
            raise

        added_ids: list[str] = []
        deleted: list[str] = []
        flags: dict[str, FlagChange] = {}
        for record in result.get("history", []):
            for added in record.get("messagesAdded", []):
                gid = (added.get("message") or {}).get("id")
                if gid and gid not in added_ids:
                    added_ids.append(gid)
            for removed in record.get("messagesDeleted", []):
                gid = (removed.get("message") or {}).get("id")
                if gid:
                    deleted.append(gid)
            for change in record.get("labelsAdded", []) + record.get("labelsRemoved", []):
                m = change.get("message") or {}
                if not m.get("id"):
                    continue
                label_ids = m.get("labelIds", [])
                flags[m["id"]] = FlagChange(
                    message_id=m["id"],
                    is_read="UNREAD" not in label_ids,
                    is_starred="STARRED" in label_ids,
                    labels=label_ids,
                    folder_id=_folder_for_labels(label_ids),
                )

        deleted_set = set(deleted)
        added_ids = [gid for gid in added_ids if gid not in deleted_set]
        added = await self._fetch_messages_batch(added_ids)
        next_token = result.get("nextPageToken")
        if next_token:
            next_cursor = f"{start_history_id}:{next_token}"
        else:
            next_cursor = str(result.get("historyId") or start_history_id)
        return ChangePage(
            added=added,
            deleted=deleted,
            flag_changed=[f for gid, f in flags.items() if gid not in deleted_set],
            next_cursor=next_cursor,
            has_more=bool(next_token),
        )

    async def refresh_token(self) -> TokenRefreshResult:
        """Refresh the access token with the Google token endpoint."""
        driver = GmailDriver(
            self._settings.google_client_id,
            self._settings.google_client_secret.get_secret_value(),
            http_client=self._http_client,
        )
        tokens = await driver.refresh_access_token(self._credentials.secrets.get("refresh_token"))
        self._access_token = tokens.access_token
        self._service = None
        logger.info("Refreshed Gmail token for %s", self._credentials.email_address)
        return TokenRefreshResult(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
        )

    async def aclose(self) -> None:
        self._service = None
