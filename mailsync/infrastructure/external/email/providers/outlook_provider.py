"""Outlook/Office 365 adapter using Microsoft Graph delta queries.

Folder cursors are Graph @odata.nextLink / @odata.deltaLink URLs. The
account-level change cursor is a JSON document holding one delta link per
mail folder plus the queue of folders still being paged in the current
round, so a change-feed pass can resume after any page.
"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any

import httpx
from msal import ConfidentialClientApplication

from mailsync.core.config import Settings
from mailsync.infrastructure.exceptions import (
    CursorExpiredError,
    ProviderAuthError,
    ProviderError,
    SubscriptionNotFoundError,
)
from mailsync.infrastructure.external.email.http_errors import raise_for_provider_status
from mailsync.infrastructure.external.email.protocols import (
    ChangePage,
    EmailPage,
    ProviderCredentials,
    ProviderFolder,
    ProviderMessage,
    RemoteSubscription,
    TokenRefreshResult,
)
from mailsync.infrastructure.external.email.providers.http_base import HttpProviderBase
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import parse_iso_utc, utc_now

logger = get_logger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
MESSAGE_FIELDS = (
    "id,conversationId,parentFolderId,subject,from,toRecipients,ccRecipients,"
    "bodyPreview,body,receivedDateTime,sentDateTime,isRead,isDraft,flag,"
    "hasAttachments,categories"
)
# Graph caps mail subscriptions at just under three days.
MAX_SUBSCRIPTION_MINUTES = 4230
INBOX_RESOURCE = "/me/mailFolders('inbox')/messages"
_MSAL_AUTH_ERRORS = frozenset({"invalid_grant", "invalid_client", "unauthorized_client"})


def _encode_cursor(links: dict[str, str], queue: list[str] | None = None) -> str:
    state: dict[str, Any] = {"links": links}
    if queue:
        state["queue"] = queue
    return json.dumps(state, sort_keys=True)


def _decode_cursor(cursor: str) -> tuple[dict[str, str], list[str] | None]:
    """Links and the folders left in the current round; None queue means a new round."""
    try:
        state = json.loads(cursor)
        links = dict(state["links"])
    except (ValueError, KeyError, TypeError) as e:
        raise CursorExpiredError("Malformed Graph change cursor", provider="outlook") from e
    queue = state.get("queue")
    return links, list(queue) if queue else None


def _initial_delta_url(folder_id: str) -> str:
    return str(
        httpx.URL(
            f"{GRAPH_URL}/me/mailFolders/{folder_id}/messages/delta",
            params={"$select": MESSAGE_FIELDS},
        )
    )


def _graph_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.0000000Z")


class OutlookProvider(HttpProviderBase):
    """Adapter for the delta_query family (Microsoft Graph)."""

    PROVIDER_NAME = "outlook"

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
        self._access_token = credentials.secrets.get("access_token")
        self._page_size = settings.sync_page_size

    @property
    def supports_change_feed(self) -> bool:
        return True

    @property
    def default_subscription_resource(self) -> str:
        return INBOX_RESOURCE

    @property
    def max_subscription_minutes(self) -> int:
        return MAX_SUBSCRIPTION_MINUTES

    async def _get_delta(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._send(
            "GET",
            url,
            params=params,
            headers={"Prefer": f"odata.maxpagesize={self._page_size}"},
        )
        if response.status_code in (404, 410):
            raise CursorExpiredError(
                f"Graph delta token rejected with status {response.status_code}",
                provider=self.PROVIDER_NAME,
            )
        return self._json_or_raise(response)

    def _json_or_raise(self, response: httpx.Response) -> dict[str, Any]:
        raise_for_provider_status(response, self.PROVIDER_NAME)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @traced("outlook.fetch_folders")
    async def fetch_folders(self) -> list[ProviderFolder]:
        folders: list[ProviderFolder] = []
        url: str | None = f"{GRAPH_URL}/me/mailFolders"
        params: dict[str, Any] | None = {"$top": 100}
        while url:
            data = await self._request_json("GET", url, params=params)
            for item in data.get("value", []):
                folders.append(
                    ProviderFolder(
                        id=item["id"],
                        name=item.get("displayName") or item["id"],
                        total_messages=int(item.get("totalItemCount") or 0),
                        unread_messages=int(item.get("unreadItemCount") or 0),
                        type_hint=item.get("wellKnownName"),
                    )
                )
            url = data.get("@odata.nextLink")
            params = None
        return folders

    @traced("outlook.fetch_emails")
    async def fetch_emails(self, folder_id: str, cursor: str | None = None) -> EmailPage:
        if cursor:
            data = await self._get_delta(cursor)
        else:
            data = await self._get_delta(
                f"{GRAPH_URL}/me/mailFolders/{folder_id}/messages/delta",
                params={"$select": MESSAGE_FIELDS},
            )
        emails = [
            self._parse_message(item, folder_id)
            for item in data.get("value", [])
            if "@removed" not in item
        ]
        next_link = data.get("@odata.nextLink")
        if next_link:
            return EmailPage(emails=emails, next_cursor=next_link, has_more=True)
        return EmailPage(emails=emails, next_cursor=data.get("@odata.deltaLink"), has_more=False)

    @traced("outlook.current_change_cursor")
    async def current_change_cursor(self) -> str | None:
        """Delta links positioned at "now" for every folder ($deltatoken=latest)."""
        links: dict[str, str] = {}
        for folder in await self.fetch_folders():
            url: str | None = f"{GRAPH_URL}/me/mailFolders/{folder.id}/messages/delta"
            params: dict[str, Any] | None = {"$deltatoken": "latest", "$select": MESSAGE_FIELDS}
            while url:
                data = await self._get_delta(url, params=params)
                params = None
                delta_link = data.get("@odata.deltaLink")
                if delta_link:
                    links[folder.id] = delta_link
                    break
                url = data.get("@odata.nextLink")
        return _encode_cursor(links)

    @traced("outlook.fetch_changes")
    async def fetch_changes(self, cursor: str) -> ChangePage:
        """Process one delta page for the first folder still queued in this round.

        Every @removed item is reported as a delete, whatever its reason. A
        moved message ("changed") gets a new id in its destination folder,
        where it arrives as an add if that folder is synced.

        A new round first reconciles the links with the current folder list:
        folders created since the cursor was issued start from a full delta,
        folders that no longer exist are dropped.
        """
        links, queue = _decode_cursor(cursor)
        if queue is None:
            links = await self._reconcile_links(links)
            queue = sorted(links)
        if not queue:
            return ChangePage(next_cursor=_encode_cursor(links), has_more=False)
        folder_id = queue[0]
        url = links.get(folder_id)
        if not url:
            raise CursorExpiredError(
                f"No delta link for folder {folder_id}", provider=self.PROVIDER_NAME
            )
        data = await self._get_delta(url)
        page = ChangePage()
        for item in data.get("value", []):
            if "@removed" in item:
                page.deleted.append(item["id"])
                continue
            page.added.append(self._parse_message(item, folder_id))
        next_link = data.get("@odata.nextLink")
        if next_link:
            links[folder_id] = next_link
        else:
            links[folder_id] = data.get("@odata.deltaLink") or url
            queue = queue[1:]
        page.has_more = bool(queue)
        page.next_cursor = _encode_cursor(links, queue)
        return page

    async def _reconcile_links(self, links: dict[str, str]) -> dict[str, str]:
        reconciled: dict[str, str] = {}
        for folder in await self.fetch_folders():
            if folder.id in links:
                reconciled[folder.id] = links[folder.id]
            else:
                logger.info("Folder %s joined the Graph change feed", folder.id)
                reconciled[folder.id] = _initial_delta_url(folder.id)
        dropped = set(links) - set(reconciled)
        if dropped:
            logger.info("Folders left the Graph change feed: %s", sorted(dropped))
        return reconciled

    def _parse_message(self, item: dict[str, Any], folder_id: str) -> ProviderMessage:
        """Parse a Graph message into ProviderMessage."""
        sender = (item.get("from") or {}).get("emailAddress") or {}
        body = item.get("body") or {}
        content_type = (body.get("contentType") or "").lower()
        flag_status = (item.get("flag") or {}).get("flagStatus")
        return ProviderMessage(
            message_id=item["id"],
            thread_id=item.get("conversationId"),
            folder_id=item.get("parentFolderId") or folder_id,
            subject=item.get("subject") or "",
            from_address=sender.get("address") or "",
            to_addresses=[
                r["emailAddress"]["address"] for r in item.get("toRecipients") or []
            ],
            cc_addresses=[
                r["emailAddress"]["address"] for r in item.get("ccRecipients") or []
            ],
            snippet=item.get("bodyPreview"),
            body_text=body.get("content") if content_type == "text" else None,
            body_html=body.get("content") if content_type == "html" else None,
            received_at=parse_iso_utc(item.get("receivedDateTime")),
            sent_at=parse_iso_utc(item.get("sentDateTime")),
            is_read=bool(item.get("isRead", False)),
            is_starred=flag_status == "flagged",
            is_draft=bool(item.get("isDraft", False)),
            has_attachments=bool(item.get("hasAttachments", False)),
            labels=list(item.get("categories") or []),
            provider_metadata={"conversation_id": item.get("conversationId")},
        )

    async def refresh_token(self) -> TokenRefreshResult:
        """Redeem the stored refresh token through msal."""
        refresh_token = self._credentials.secrets.get("refresh_token")
        if not refresh_token:
            raise ProviderAuthError("No Microsoft refresh token stored", provider=self.PROVIDER_NAME)
        app = ConfidentialClientApplication(
            self._settings.microsoft_client_id,
            authority=f"https://login.microsoftonline.com/{self._settings.microsoft_tenant_id}",
            client_credential=self._settings.microsoft_client_secret.get_secret_value(),
        )
        result = await asyncio.to_thread(
            app.acquire_token_by_refresh_token, refresh_token, scopes=GRAPH_SCOPES
        )
        if "access_token" not in result:
            error = result.get("error")
            message = f"Microsoft token refresh failed: {result.get('error_description') or error}"
            if error in _MSAL_AUTH_ERRORS:
                raise ProviderAuthError(message, provider=self.PROVIDER_NAME)
            raise ProviderError(message, provider=self.PROVIDER_NAME)
        self._access_token = result["access_token"]
        expires_in = int(result.get("expires_in") or 3600)
        logger.info("Refreshed Microsoft token for %s", self._credentials.email_address)
        return TokenRefreshResult(
            access_token=result["access_token"],
            refresh_token=result.get("refresh_token") or refresh_token,
            expires_at=utc_now() + timedelta(seconds=expires_in),
        )

    @traced("outlook.create_subscription")
    async def create_subscription(
        self,
        *,
        resource: str,
        change_type: str,
        notification_url: str,
        client_state: str,
        expiration: datetime,
    ) -> RemoteSubscription:
        data = await self._request_json(
            "POST",
            f"{GRAPH_URL}/subscriptions",
            json={
                "changeType": change_type,
                "notificationUrl": notification_url,
                "resource": resource,
                "expirationDateTime": _graph_time(expiration),
                "clientState": client_state,
            },
        )
        return RemoteSubscription(
            id=data["id"],
            expiration=parse_iso_utc(data.get("expirationDateTime")) or expiration,
            resource=data.get("resource") or resource,
            change_type=data.get("changeType") or change_type,
        )

    @traced("outlook.renew_subscription")
    async def renew_subscription(self, subscription_id: str, expiration: datetime) -> datetime:
        response = await self._send(
            "PATCH",
            f"{GRAPH_URL}/subscriptions/{subscription_id}",
            json={"expirationDateTime": _graph_time(expiration)},
        )
        if response.status_code == 404:
            raise SubscriptionNotFoundError(subscription_id, provider=self.PROVIDER_NAME)
        data = self._json_or_raise(response)
        return parse_iso_utc(data.get("expirationDateTime")) or expiration

    @traced("outlook.delete_subscription")
    async def delete_subscription(self, subscription_id: str) -> None:
        response = await self._send("DELETE", f"{GRAPH_URL}/subscriptions/{subscription_id}")
        if response.status_code == 404:
            raise SubscriptionNotFoundError(subscription_id, provider=self.PROVIDER_NAME)
        if response.status_code >= 400:
            self._json_or_raise(response)
