"""IMAP email provider (iCloud, Yahoo, custom servers)."""

import asyncio
import email
import re
from email import policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any

import aioimaplib
import httpx

from mailsync.core.config import Settings
from mailsync.infrastructure.exceptions import (
    CursorExpiredError,
    ProviderAuthError,
    ProviderError,
    TransientProviderError,
)
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    EmailPage,
    ProviderCredentials,
    ProviderFolder,
    ProviderMessage,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import ensure_utc

logger = get_logger(__name__)

_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)$')
_STATUS_ITEM_RE = re.compile(rb"(MESSAGES|UNSEEN|UIDVALIDITY) (\d+)")
_FETCH_UID_RE = re.compile(rb"UID (\d+)")
_FETCH_FLAGS_RE = re.compile(rb"FLAGS \(([^)]*)\)")
# RFC 6154 special-use attributes that name a folder role.
_SPECIAL_USE = {
    b"\\sent": "sent",
    b"\\drafts": "drafts",
    b"\\trash": "trash",
    b"\\junk": "spam",
    b"\\archive": "archive",
    b"\\all": "archive",
}


def _quote(mailbox: str) -> str:
    return '"' + mailbox.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace").strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def _parse_cursor(cursor: str | None) -> tuple[int | None, int]:
    if not cursor:
        return None, 0
    validity, _, last_uid = cursor.partition(":")
    try:
        return int(validity), int(last_uid or 0)
    except ValueError as e:
        raise CursorExpiredError(f"Malformed IMAP cursor: {cursor}", provider="imap") from e


def _text_part(message: EmailMessage, subtype: str) -> str | None:
    part = message.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        return None


class IMAPProvider:
    """Adapter for the legacy_imap family.

    Folder cursors are "<UIDVALIDITY>:<last seen UID>". There is no
    account-wide change feed; incremental sync resumes each folder from its
    UID checkpoint.
    """

    PROVIDER_NAME = "imap"

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._client: aioimaplib.IMAP4 | None = None
        self._selected: str | None = None

    @property
    def supports_change_feed(self) -> bool:
        return False

    async def _connect(self) -> aioimaplib.IMAP4:
        """Connect and log in to the IMAP server."""
        if self._client is not None:
            return self._client
        params = self._credentials.connection_params or {}
        imap_server = params.get("imap_server")
        imap_port = int(params.get("imap_port", 993))
        if not imap_server:
            raise ProviderError(
                "imap_server required in connection_params", provider=self.PROVIDER_NAME
            )
        username = self._credentials.secrets.get("username") or self._credentials.email_address
        password = self._credentials.secrets.get("password")
        if not password:
            raise ProviderAuthError("IMAP password missing", provider=self.PROVIDER_NAME)
        logger.info("Connecting to IMAP server: %s:%s", imap_server, imap_port)
        if params.get("use_ssl", True):
            client = aioimaplib.IMAP4_SSL(host=imap_server, port=imap_port)
        else:
            client = aioimaplib.IMAP4(host=imap_server, port=imap_port)
        try:
            await client.wait_hello_from_server()
            response = await client.login(username, password)
        except (OSError, asyncio.TimeoutError) as e:
            raise TransientProviderError(
                f"IMAP connection to {imap_server} failed: {e}", provider=self.PROVIDER_NAME
            ) from e
        if response.result != "OK":
            raise ProviderAuthError(
                f"IMAP login rejected for {username}", provider=self.PROVIDER_NAME
            )
        self._client = client
        logger.info("Successfully connected to IMAP: %s", username)
        return client

    async def _command(self, name: str, *args: Any) -> list[Any]:
        client = await self._connect()
        try:
            response = await getattr(client, name)(*args)
        except (OSError, asyncio.TimeoutError) as e:
            raise TransientProviderError(
                f"IMAP {name} failed: {e}", provider=self.PROVIDER_NAME
            ) from e
        if response.result != "OK":
            raise ProviderError(
                f"IMAP {name} returned {response.result}: {response.lines[-1:]}",
                provider=self.PROVIDER_NAME,
            )
        return response.lines

    @traced("imap.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        folders: list[ProviderFolder] = []
        for line in await self._command("list", '""', "*"):
            if not isinstance(line, (bytes, bytearray)):
                continue
            match = _LIST_RE.match(bytes(line))
            if not match:
                continue
            flags = match.group("flags").lower().split()
            if b"\\noselect" in flags or b"\\nonexistent" in flags:
                continue
            name = _unquote(match.group("name"))
            counts = await self._status(name)
            type_hint = next((_SPECIAL_USE[f] for f in flags if f in _SPECIAL_USE), None)
            folders.append(
                ProviderFolder(
                    id=name,
                    name=name,
                    total_messages=counts.get("MESSAGES", 0),
                    unread_messages=counts.get("UNSEEN", 0),
                    type_hint=type_hint,
                )
            )
        return folders

    async def _status(self, mailbox: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        lines = await self._command("status", _quote(mailbox), "(MESSAGES UNSEEN UIDVALIDITY)")
        for line in lines:
            if isinstance(line, (bytes, bytearray)):
                for key, value in _STATUS_ITEM_RE.findall(bytes(line)):
                    counts[key.decode()] = int(value)
        return counts

    async def _select(self, mailbox: str) -> None:
        if self._selected != mailbox:
            await self._command("select", _quote(mailbox))
            self._selected = mailbox

    @traced("imap.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> EmailPage:
        """Next page of messages with UID above the checkpoint.

        Raises:
            CursorExpiredError: UIDVALIDITY changed since the cursor was issued.
        """
        stored_validity, last_uid = _parse_cursor(cursor)
        validity = (await self._status(folder_id)).get("UIDVALIDITY", 0)
        if stored_validity is not None and stored_validity != validity:
            raise CursorExpiredError(
                f"UIDVALIDITY changed for {folder_id}: {stored_validity} -> {validity}",
                provider=self.PROVIDER_NAME,
            )
        await self._select(folder_id)
        lines = await self._command("uid_search", f"UID {last_uid + 1}:*")
        uids = sorted(
            {
                int(token)
                for line in lines
                if isinstance(line, (bytes, bytearray))
                for token in bytes(line).split()
                if token.isdigit() and int(token) > last_uid
            }
        )
        page_size = self._settings.sync_page_size
        batch, remaining = uids[:page_size], uids[page_size:]
        emails = await self._fetch_uids(folder_id, batch) if batch else []
        checkpoint = batch[-1] if batch else last_uid
        return EmailPage(
            emails=emails,
            next_cursor=f"{validity}:{checkpoint}",
            has_more=bool(remaining),
        )

    async def _fetch_uids(self, folder_id: str, uids: list[int]) -> list[ProviderMessage]:
        uid_set = ",".join(str(uid) for uid in uids)
        lines = await self._command("uid", "fetch", uid_set, "(UID FLAGS BODY.PEEK[])")
        messages: list[ProviderMessage] = []
        header: bytes | None = None
        for line in lines:
            if isinstance(line, bytearray) and header is not None:
                uid_match = _FETCH_UID_RE.search(header)
                flags_match = _FETCH_FLAGS_RE.search(header)
                if uid_match:
                    messages.append(
                        self._parse_message(
                            bytes(line),
                            uid=uid_match.group(1).decode(),
                            flags=flags_match.group(1).decode() if flags_match else "",
                            folder_id=folder_id,
                        )
                    )
                header = None
            elif isinstance(line, bytes) and b"FETCH" in line:
                header = line
        return messages

    def _parse_message(
        self, raw: bytes, *, uid: str, flags: str, folder_id: str
    ) -> ProviderMessage:
        """Parse a single RFC 822 message."""
        message = email.message_from_bytes(raw, policy=policy.default)
        date_str = message.get("Date")
        try:
            sent_at = ensure_utc(parsedate_to_datetime(date_str)) if date_str else None
        except (TypeError, ValueError):
            sent_at = None
        from_addresses = [a for _, a in getaddresses([str(message.get("From", ""))]) if a]
        has_attachments = any(
            part.get_content_disposition() == "attachment" for part in message.walk()
        )
        return ProviderMessage(
            message_id=str(message.get("Message-ID") or f"imap-{folder_id}-{uid}").strip(),
            thread_id=message.get("In-Reply-To"),
            folder_id=folder_id,
            subject=str(message.get("Subject", "")),
            from_address=from_addresses[0] if from_addresses else "",
            to_addresses=[a for _, a in getaddresses([str(message.get("To", ""))]) if a],
            cc_addresses=[a for _, a in getaddresses([str(message.get("Cc", ""))]) if a],
            body_text=_text_part(message, "plain"),
            body_html=_text_part(message, "html"),
            received_at=sent_at,
            sent_at=sent_at,
            is_read="\\Seen" in flags,
            is_starred="\\Flagged" in flags,
            is_draft="\\Draft" in flags,
            has_attachments=has_attachments,
            labels=[folder_id],
            provider_metadata={"imap_uid": uid, "flags": flags},
        )

    async def fetch_changes(self, cursor: str) -> ChangePage:
        """IMAP has no account change feed."""
        raise NotImplementedError("IMAP does not provide an account change feed")

    async def current_change_cursor(self) -> str | None:
        return None

    async def refresh_token(self) -> None:
        """Password auth; nothing to refresh."""
        return None

    async def aclose(self) -> None:
        """Disconnect from IMAP."""
        if self._client is not None:
            try:
                await self._client.logout()
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug("IMAP logout failed: %s", e)
            self._client = None
            self._selected = None
            logger.info("Disconnected from IMAP server")
