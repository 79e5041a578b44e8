"""Translate httpx responses and transport failures into provider exceptions."""

import httpx

from mailsync.infrastructure.exceptions import (
    ProviderAuthError,
    ProviderError,
    TransientProviderError,
)

_AUTH_ERROR_CODES = frozenset({"invalid_grant", "invalid_client", "unauthorized_client"})


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code")
    return error if isinstance(error, str) else None


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the matching ProviderError subclass for a non-2xx response.

    401/403 and OAuth invalid_grant map to ProviderAuthError; 429 and 5xx map
    to TransientProviderError; anything else is a plain ProviderError.
    Callers that give 404/410 a special meaning check for it first.
    """
    status = response.status_code
    if status < 400:
        return
    code = _error_code(response)
    message = f"{provider} request failed with status {status}"
    if code:
        message = f"{message} ({code})"
    if status in (401, 403) or (status == 400 and code in _AUTH_ERROR_CODES):
        raise ProviderAuthError(message, provider=provider, status_code=status)
    if status == 429 or status >= 500:
        raise TransientProviderError(
            message,
            provider=provider,
            status_code=status,
            retry_after=_retry_after(response),
        )
    raise ProviderError(message, provider=provider, status_code=status)


def transport_error(exc: httpx.TransportError, provider: str) -> TransientProviderError:
    """Wrap a connect/read/timeout failure so the retry policy treats it as transient."""
    return TransientProviderError(f"{provider} network error: {exc}", provider=provider)
