"""Bounded retry for sync attempts, built on tenacity.

Retries only retryable failures (see error_classifier.is_retryable), waits
with exponential backoff plus jitter and honours a provider Retry-After.
Exhaustion raises SyncRetryExhaustedError rather than the last error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from mailsync.application.services.error_classifier import is_retryable
from mailsync.core.config import Settings
from mailsync.domain.exceptions import SyncRetryExhaustedError
from mailsync.infrastructure.exceptions import TransientProviderError
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Runs an attempt callable up to max_attempts times."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        backoff_max_seconds: float = 3600.0,
        retry_on: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._retry_on = retry_on
        self._sleep = sleep
        self._backoff = wait_exponential(
            multiplier=backoff_seconds, max=backoff_max_seconds
        ) + wait_random(0, backoff_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.sync_retry_attempts,
            backoff_seconds=settings.sync_retry_backoff_seconds,
            backoff_max_seconds=settings.sync_retry_backoff_max_seconds,
        )

    def _should_retry(self, exception: BaseException) -> bool:
        # CancelledError and other BaseExceptions are never retried.
        return isinstance(exception, Exception) and self._retry_on(exception)

    def _wait(self, retry_state: RetryCallState) -> float:
        """Retry-After from a throttled provider wins over the computed backoff."""
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exception, TransientProviderError) and exception.retry_after:
            return min(max(exception.retry_after, 1.0), self.backoff_max_seconds)
        return self._backoff(retry_state)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Sync attempt %d failed (%s); retrying in %.1fs",
            retry_state.attempt_number,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    async def run(self, account_id: str, attempt_fn: Callable[[int], Awaitable[T]]) -> T:
        """Call attempt_fn(attempt_number) until it succeeds or attempts run out.

        Raises:
            SyncRetryExhaustedError: Every attempt failed with a retryable error.
            Exception: The first non-retryable error, unchanged.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self._should_retry),
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await attempt_fn(attempt.retry_state.attempt_number)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise SyncRetryExhaustedError(
                account_id, e.last_attempt.attempt_number, last_error
            ) from last_error
