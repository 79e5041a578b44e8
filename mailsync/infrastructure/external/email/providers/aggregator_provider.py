"""Aggregator adapter (Aurinko-style unified mail API over httpx)."""

import json
from datetime import timedelta
from typing import Any

import httpx

from mailsync.core.config import Settings
from mailsync.infrastructure.exceptions import CursorExpiredError, ProviderAuthError
from mailsync.infrastructure.external.email.http_errors import (
    raise_for_provider_status,
    transport_error,
)
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    EmailPage,
    ProviderCredentials,
    ProviderFolder,
    ProviderMessage,
    TokenRefreshResult,
)
from mailsync.infrastructure.external.email.providers.http_base import HttpProviderBase
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import parse_iso_utc, utc_now

logger = get_logger(__name__)

_PHASE_UPDATED = "updated"
_PHASE_DELETED = "deleted"


def _address(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("email") or value.get("address") or ""
    return value or ""


def _encode_cursor(state: dict[str, Any]) -> str:
    return json.dumps(state, sort_keys=True)


def _decode_cursor(cursor: str) -> dict[str, Any]:
    try:
        state = json.loads(cursor)
        if not state.get(_PHASE_UPDATED) or not state.get(_PHASE_DELETED):
            raise KeyError("delta tokens")
    except (ValueError, KeyError, AttributeError) as e:
        raise CursorExpiredError("Malformed aggregator sync cursor", provider="aggregator") from e
    state.setdefault("phase", _PHASE_UPDATED)
    return state


class AggregatorProvider(HttpProviderBase):
    """Adapter for the aggregator family.

    The change cursor carries the two delta tokens of the aggregator's sync
    model (updated and deleted), which phase is being paged, and the page
    token within that phase.
    """

    PROVIDER_NAME = "aggregator"

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._credentials = credentials
        self._settings = settings
        self._base_url = (
            credentials.connection_params.get("base_url") or settings.aggregator_base_url
        ).rstrip("/")
        self._access_token = credentials.secrets.get("access_token")

    @property
    def supports_change_feed(self) -> bool:
        return True

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @traced("aggregator.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        data = await self._request_json("GET", self._url("/email/folders"))
        return [
            ProviderFolder(
                id=record["id"],
                name=record.get("name") or record["id"],
                total_messages=int(record.get("totalCount") or 0),
                unread_messages=int(record.get("unreadCount") or 0),
                type_hint=record.get("type"),
            )
            for record in data.get("records", [])
        ]

    @traced("aggregator.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> EmailPage:
        params: dict[str, Any] = {
            "folderId": folder_id,
            "limit": self._settings.sync_page_size,
            "includeBody": "true",
        }
        if cursor:
            params["pageToken"] = cursor
        response = await self._send("GET", self._url("/email/messages"), params=params)
        if cursor and response.status_code in (400, 404, 410):
            raise CursorExpiredError(
                f"Aggregator page token rejected for folder {folder_id}",
                provider=self.PROVIDER_NAME,
            )
        raise_for_provider_status(response, self.PROVIDER_NAME)
        data = response.json()
        next_token = data.get("nextPageToken")
        return EmailPage(
            emails=[self._parse_message(r, folder_id) for r in data.get("records", [])],
            next_cursor=next_token,
            has_more=bool(next_token),
        )

    @traced("aggregator.current_change_cursor")
    async def current_change_cursor(self) -> str | None:
        """Start (or resume) the aggregator's sync model; None until it is ready."""
        data = await self._request_json("POST", self._url("/email/sync"))
        updated = data.get("syncUpdatedToken")
        deleted = data.get("syncDeletedToken")
        if not data.get("ready", True) or not updated or not deleted:
            logger.info("Aggregator sync model not ready for %s", self._credentials.email_address)
            return None
        return _encode_cursor({"phase": _PHASE_UPDATED, "updated": updated, "deleted": deleted})

    @traced("aggregator.fetch_changes")
    async def fetch_changes(self, cursor: str) -> ChangePage:
        """One page of the updated phase, then the deleted phase."""
        state = _decode_cursor(cursor)
        phase = state["phase"]
        params: dict[str, Any] = {"limit": self._settings.sync_page_size}
        if state.get("page"):
            params["pageToken"] = state["page"]
        else:
            params["deltaToken"] = state[phase]
        response = await self._send("GET", self._url(f"/email/sync/{phase}"), params=params)
        if response.status_code in (404, 410):
            raise CursorExpiredError(
                f"Aggregator {phase} delta token expired", provider=self.PROVIDER_NAME
            )
        raise_for_provider_status(response, self.PROVIDER_NAME)
        data = response.json()
        records = data.get("records", [])

        page = ChangePage()
        if phase == _PHASE_UPDATED:
            page.added = [self._parse_message(r, r.get("folderId")) for r in records]
        else:
            page.deleted = [r["id"] for r in records if r.get("id")]

        next_page = data.get("nextPageToken")
        if next_page:
            state["page"] = next_page
            page.has_more = True
        else:
            state.pop("page", None)
            state[phase] = data.get("nextDeltaToken") or state[phase]
            if phase == _PHASE_UPDATED:
                state["phase"] = _PHASE_DELETED
                page.has_more = True
            else:
                state["phase"] = _PHASE_UPDATED
                page.has_more = False
        page.next_cursor = _encode_cursor(state)
        return page

    def _parse_message(self, record: dict[str, Any], folder_id: str | None) -> ProviderMessage:
        """Parse an aggregator message record into ProviderMessage."""
        received = record.get("receivedDateTime") or record.get("date")
        return ProviderMessage(
            message_id=record["id"],
            thread_id=record.get("threadId") or record["id"],
            folder_id=record.get("folderId") or folder_id,
            subject=record.get("subject") or "",
            from_address=_address(record.get("from")),
            to_addresses=[_address(a) for a in record.get("to") or [] if _address(a)],
            cc_addresses=[_address(a) for a in record.get("cc") or [] if _address(a)],
            snippet=record.get("bodyPreview"),
            body_text=record.get("body"),
            body_html=record.get("bodyHtml"),
            received_at=parse_iso_utc(received),
            sent_at=parse_iso_utc(record.get("date")),
            is_read=bool(record.get("isRead", False)),
            is_starred=bool(record.get("isFlagged", False)),
            is_draft=bool(record.get("isDraft", False)),
            has_attachments=bool(record.get("hasAttachments", False)),
            labels=list(record.get("labels") or []),
        )

    async def refresh_token(self) -> TokenRefreshResult:
        """Refresh through the aggregator token endpoint (camelCase JSON body)."""
        refresh_token = self._credentials.secrets.get("refresh_token")
        if not refresh_token:
            raise ProviderAuthError(
                "No aggregator refresh token stored", provider=self.PROVIDER_NAME
            )
        payload = {
            "refreshToken": refresh_token,
            "clientId": self._settings.aggregator_client_id,
            "clientSecret": self._settings.aggregator_client_secret.get_secret_value(),
            "grantType": "refresh_token",
        }
        async with self._http_cm() as client:
            try:
                response = await client.post(self._url("/auth/token"), json=payload)
            except httpx.TransportError as e:
                raise transport_error(e, self.PROVIDER_NAME) from e
        if response.status_code in (400, 401):
            raise ProviderAuthError(
                "Aggregator refresh token rejected",
                provider=self.PROVIDER_NAME,
                status_code=response.status_code,
            )
        raise_for_provider_status(response, self.PROVIDER_NAME)
        tokens = response.json()
        self._access_token = tokens["accessToken"]
        expires_in = tokens.get("expiresIn")
        return TokenRefreshResult(
            access_token=tokens["accessToken"],
            refresh_token=tokens.get("refreshToken") or refresh_token,
            expires_at=utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )
