"""Infrastructure exceptions raised by provider adapters.

They extend MailSyncException so presentation can map them consistently.
Adapters translate SDK and HTTP errors into these types; nothing above the
adapter layer inspects provider-specific exceptions.
"""

from typing import Any

from mailsync.domain.exceptions import MailSyncException


class ProviderError(MailSyncException):
    """Base for errors reported by a mail provider."""

    def __init__(
        self,
        message: str,
        error_code: str = "PROVIDER_ERROR",
        *,
        provider: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {"provider": provider, "status_code": status_code, **(details or {})}
        super().__init__(message, error_code, merged)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Credentials were rejected (401/403, invalid_grant, IMAP LOGIN failure).

    The account is marked status=error and is not retried until the user
    re-authorizes.
    """

    def __init__(
        self,
        message: str = "Provider rejected credentials",
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message,
            "PROVIDER_AUTH_ERROR",
            provider=provider,
            status_code=status_code,
        )


class TransientProviderError(ProviderError):
    """Network failure, throttling (429) or provider 5xx; safe to retry."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(
            message,
            "PROVIDER_TRANSIENT_ERROR",
            provider=provider,
            status_code=status_code,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class CursorExpiredError(ProviderError):
    """A stored folder or change cursor is no longer accepted by the provider.

    Callers fall back to a full listing instead of failing the job.
    """

    def __init__(self, message: str = "Sync cursor expired", *, provider: str | None = None) -> None:
        super().__init__(message, "CURSOR_EXPIRED", provider=provider)


class SubscriptionNotFoundError(ProviderError):
    """The provider no longer knows the push subscription (404)."""

    def __init__(self, subscription_id: str, *, provider: str | None = None) -> None:
        super().__init__(
            f"Subscription not found: {subscription_id}",
            "SUBSCRIPTION_NOT_FOUND",
            provider=provider,
            status_code=404,
            details={"subscription_id": subscription_id},
        )
        self.subscription_id = subscription_id


class UnsupportedProviderError(MailSyncException):
    """No adapter is registered for the provider family."""

    def __init__(self, provider_family: str, supported: list[str]) -> None:
        super().__init__(
            f"Unsupported provider family: {provider_family}. Supported: {', '.join(supported)}",
            "UNSUPPORTED_PROVIDER",
            {"provider_family": provider_family, "supported": supported},
        )
