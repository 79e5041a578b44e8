"""OAuth refresh drivers for providers refreshed with a plain token endpoint."""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, ClassVar

import httpx

from mailsync.infrastructure.exceptions import ProviderAuthError
from mailsync.infrastructure.external.email.http_errors import (
    raise_for_provider_status,
    transport_error,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)


@dataclass
class OAuthTokens:
    """Normalized OAuth token response."""

    access_token: str
    refresh_token: str | None
    token_type: str
    expires_in: int
    expires_at: datetime
    scope: str | None = None


class OAuthDriver(ABC):
    """Refresh-token grant against TOKEN_ENDPOINT."""

    PROVIDER_NAME: ClassVar[str]
    TOKEN_ENDPOINT: ClassVar[str]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http_client

    async def _post_form(self, data: dict[str, Any]) -> httpx.Response:
        try:
            if self._http is not None:
                return await self._http.post(self.TOKEN_ENDPOINT, data=data)
            async with httpx.AsyncClient(timeout=30.0) as client:
                return await client.post(self.TOKEN_ENDPOINT, data=data)
        except httpx.TransportError as e:
            raise transport_error(e, self.PROVIDER_NAME) from e

    async def refresh_access_token(self, refresh_token: str | None) -> OAuthTokens:
        """Exchange a refresh token for a new access token.

        The provider may omit refresh_token in the response; the old one is
        kept in that case.

        Raises:
            ProviderAuthError: No refresh token, or the grant was rejected.
            TransientProviderError: Network failure or provider 5xx.
        """
        if not refresh_token:
            raise ProviderAuthError(
                f"{self.PROVIDER_NAME}: no refresh token stored", provider=self.PROVIDER_NAME
            )
        response = await self._post_form(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        if response.status_code != 200:
            logger.error(
                "%s token refresh failed: status=%d", self.PROVIDER_NAME, response.status_code
            )
            raise_for_provider_status(response, self.PROVIDER_NAME)
        tokens = self._normalize_token_response(response.json())
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens

    def _normalize_token_response(self, token_data: dict[str, Any]) -> OAuthTokens:
        expires_in = int(token_data.get("expires_in", 3600))
        return OAuthTokens(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=expires_in,
            expires_at=utc_now() + timedelta(seconds=expires_in),
            scope=token_data.get("scope"),
        )


class GmailDriver(OAuthDriver):
    """Google OAuth token endpoint."""

    PROVIDER_NAME = "gmail"
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
