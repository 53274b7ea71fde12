"""Retry-with-backoff for arbitrary async operations.

Attempts are strictly sequential: attempt *k + 1* starts only after attempt
*k* has failed and ``base_delay * 2**k`` seconds have elapsed.  No delay
follows the final attempt, and the final failure is re-raised unchanged.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from chatrelay.errors import (
    AuthError,
    ConfigurationError,
    RateLimitError,
    TimeoutError,
    ValidationError,
)

T = TypeVar("T")

_log = structlog.get_logger(__name__)

# Errors that a retry cannot fix, or that must be surfaced to the caller
# as-is (timeouts and throttling are a higher layer's decision).
_PERMANENT_ERRORS: tuple[type[Exception], ...] = (
    ValidationError,
    ConfigurationError,
    AuthError,
    TimeoutError,
    RateLimitError,
)


def is_transient(exc: BaseException) -> bool:
    """Retry predicate that skips validation, configuration, auth, timeout and rate-limit errors."""
    return isinstance(exc, Exception) and not isinstance(exc, _PERMANENT_ERRORS)


def _retry_everything(exc: BaseException) -> bool:
    # Cancellation is never retried.
    return isinstance(exc, Exception)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _before_sleep(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` hook that emits a structured warning."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    next_action = retry_state.next_action
    wait_seconds = next_action.sleep if next_action is not None else 0.0
    _log.warning(
        "llm_request_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_seconds, 2),
        error_type=type(exc).__name__ if exc else None,
        error=str(exc) if exc else None,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    *,
    retry_on: Callable[[BaseException], bool] | None = None,
) -> T:
    """Run *operation* up to ``max_retries + 1`` times with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per
            attempt.
        max_retries: Retries after the first attempt.  ``0`` disables
            retrying.
        base_delay: Delay in seconds before the first retry; doubled for each
            subsequent retry.
        retry_on: Predicate selecting which exceptions are retried.  ``None``
            retries every exception; pass :func:`is_transient` to leave
            permanent errors alone.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The exception from the last attempt, unchanged.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        retry=retry_if_exception(retry_on or _retry_everything),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        sleep=_sleep,
        before_sleep=_before_sleep,
        reraise=True,
    ):
        with attempt:
            return await operation()

    raise AssertionError("unreachable")  # pragma: no cover
