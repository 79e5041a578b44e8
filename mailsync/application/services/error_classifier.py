"""Map sync failures to an ErrorKind; drives account status and retry."""

from __future__ import annotations

from mailsync.domain.enums import ErrorKind
from mailsync.domain.exceptions import (
    AccountRequiresReauthException,
    CredentialException,
    EmailNormalizationError,
    ResourceNotFoundException,
    ValidationException,
)
from mailsync.infrastructure.exceptions import (
    ProviderAuthError,
    ProviderError,
    TransientProviderError,
    UnsupportedProviderError,
)

_RETRYABLE = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.NETWORK, ErrorKind.PROVIDER, ErrorKind.UNKNOWN}
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Coarse kind of a sync failure."""
    if isinstance(exc, (ProviderAuthError, CredentialException, AccountRequiresReauthException)):
        return ErrorKind.AUTH
    if isinstance(exc, TransientProviderError):
        if exc.status_code == 429:
            return ErrorKind.RATE_LIMIT
        return ErrorKind.NETWORK if exc.status_code is None else ErrorKind.PROVIDER
    if isinstance(exc, ProviderError):
        return ErrorKind.PROVIDER
    if isinstance(
        exc,
        (
            EmailNormalizationError,
            ValidationException,
            ResourceNotFoundException,
            UnsupportedProviderError,
            ValueError,
        ),
    ):
        return ErrorKind.INVALID_DATA
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def is_auth_error(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.AUTH


def is_retryable(exc: BaseException) -> bool:
    """Auth failures, missing accounts and bad data are never retried."""
    return classify_error(exc) in _RETRYABLE
