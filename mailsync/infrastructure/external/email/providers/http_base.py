"""Shared plumbing for adapters that speak JSON over httpx."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from mailsync.infrastructure.external.email.http_errors import (
    raise_for_provider_status,
    transport_error,
)


class HttpProviderBase:
    """Bearer-token JSON requests with provider error translation.

    Uses the shared httpx.AsyncClient when one is injected (connection reuse
    across accounts); otherwise opens a short-lived client per request.
    """

    PROVIDER_NAME = "http"

    def __init__(self, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._shared_http = http_client
        self._access_token: str | None = None

    @asynccontextmanager
    async def _http_cm(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient(timeout=30.0) as client:
            yield client

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and return the raw response (no status handling)."""
        async with self._http_cm() as client:
            try:
                return await client.request(
                    method, url, headers=self._headers(headers), **kwargs
                )
            except httpx.TransportError as e:
                raise transport_error(e, self.PROVIDER_NAME) from e

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._send(method, url, **kwargs)
        raise_for_provider_status(response, self.PROVIDER_NAME)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        self._access_token = None
