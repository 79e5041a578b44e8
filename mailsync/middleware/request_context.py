"""Request ID and correlation ID middleware (raw ASGI).

Both ids are stored on scope["state"] and echoed on the response. Client
supplied request ids are validated before they reach the logs.
"""

import re
import uuid
from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

REQUEST_ID_MAX_LENGTH = 64
_REQUEST_ID_PATTERN = re.compile(rf"^[A-Za-z0-9_-]{{1,{REQUEST_ID_MAX_LENGTH}}}$")


def _header(scope: Scope, name: str) -> str | None:
    wanted = name.lower().encode()
    for key, value in scope.get("headers", []):
        if key.lower() == wanted:
            return value.decode("utf-8", errors="replace")
    return None


def _clean_request_id(raw: str | None) -> str:
    candidate = (raw or "").strip()
    if _REQUEST_ID_PATTERN.match(candidate):
        return candidate
    return str(uuid.uuid4())


def _echo_header(send: Send, header_name: str, value: str) -> Send:
    async def send_with_header(message: Message) -> None:
        if message["type"] == "http.response.start":
            headers = list(message.get("headers", []))
            headers.append((header_name.encode(), value.encode()))
            message["headers"] = headers
        await send(message)

    return send_with_header


def RequestIDMiddleware(app: ASGIApp, header_name: str = "X-Request-ID") -> ASGIApp:
    """Forward a valid client request id or mint a new one."""

    async def asgi_app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return
        request_id = _clean_request_id(_header(scope, header_name))
        scope.setdefault("state", {})["request_id"] = request_id
        await app(scope, receive, _echo_header(send, header_name, request_id))

    return asgi_app


def CorrelationIDMiddleware(app: ASGIApp, header_name: str = "X-Correlation-ID") -> ASGIApp:
    """Forward the caller's correlation id, else reuse the request id."""

    async def asgi_app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return
        state = scope.setdefault("state", {})
        correlation_id = (
            _header(scope, header_name) or state.get("request_id") or str(uuid.uuid4())
        )
        state["correlation_id"] = correlation_id
        await app(scope, receive, _echo_header(send, header_name, correlation_id))

    return asgi_app
