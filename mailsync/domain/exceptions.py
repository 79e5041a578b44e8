"""Domain exceptions for the sync engine.

Presentation maps them to HTTP responses by error_code (see
mailsync.core.exception_handlers). Provider-facing errors live in
mailsync.infrastructure.exceptions and extend the same base.
"""

from typing import Any


class MailSyncException(Exception):
    """Base exception for all mailsync errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. account_id).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a JSON error body."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(MailSyncException):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class ResourceNotFoundException(MailSyncException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class AccountNotFoundException(ResourceNotFoundException):
    """Raised when a sync is requested for an account that does not exist.

    Fatal for the run and never retried.
    """

    def __init__(self, account_id: str) -> None:
        super().__init__("Account", account_id)
        self.error_code = "ACCOUNT_NOT_FOUND"


class AccountRequiresReauthException(MailSyncException):
    """Raised when a sync is requested for an account whose credentials were rejected.

    The account stays halted (status=error) until it is re-authorized. Fatal
    for the run and never retried.
    """

    def __init__(self, account_id: str) -> None:
        super().__init__(
            f"Account {account_id} needs re-authorization before it can sync",
            "ACCOUNT_REQUIRES_REAUTH",
            {"account_id": account_id},
        )


class CredentialException(MailSyncException):
    """Raised when stored credentials cannot be decrypted or are malformed."""

    def __init__(self, message: str = "Credential operation failed") -> None:
        super().__init__(message, "CREDENTIAL_ERROR")


class EmailNormalizationError(MailSyncException):
    """Raised when one provider message cannot be turned into an email row."""

    def __init__(self, message_id: str | None, reason: str) -> None:
        super().__init__(
            f"Cannot normalize message {message_id or '<unknown>'}: {reason}",
            "EMAIL_NORMALIZATION_ERROR",
            {"message_id": message_id, "reason": reason},
        )


class SyncRetryExhaustedError(MailSyncException):
    """Raised when every attempt of the bounded retry policy has failed.

    Distinct from the underlying error so callers can tell a first-attempt
    failure from a terminal one. The last error is kept on last_error and
    chained as __cause__.
    """

    def __init__(self, account_id: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Sync for account {account_id} failed after {attempts} attempts: {last_error}",
            "SYNC_RETRY_EXHAUSTED",
            {
                "account_id": account_id,
                "attempts": attempts,
                "last_error": str(last_error),
            },
        )
        self.attempts = attempts
        self.last_error = last_error


class WebhooksNotSupportedError(MailSyncException):
    """Raised when subscribing an account whose provider has no push API."""

    def __init__(self, provider_family: str) -> None:
        super().__init__(
            f"Provider family '{provider_family}' does not support webhooks",
            "WEBHOOKS_NOT_SUPPORTED",
            {"provider_family": provider_family},
        )


class SqlNotConfiguredException(MailSyncException):
    """Raised when the database engine has not been configured."""

    def __init__(self) -> None:
        super().__init__(
            message="This operation requires a SQL database that is not configured.",
            error_code="SERVICE_UNAVAILABLE",
        )
