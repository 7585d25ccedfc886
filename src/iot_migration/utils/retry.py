"""Retries for registry calls, built on tenacity.

Only transient failures are retried: network errors, 5xx responses and
rate limiting. 404 and 409 drive the upsert and binding logic and must
reach the caller on the first attempt.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from iot_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


def wait_for_retry_after(min_wait: float, max_wait: float) -> Callable[[RetryCallState], float]:
    """Wait strategy that prefers the server's ``Retry-After`` hint.

    The hint is capped at ``max_wait``; without one, jittered exponential
    backoff between ``min_wait`` and ``max_wait`` is used.
    """
    backoff = wait_random_exponential(multiplier=1, min=min_wait, max=max_wait)

    def _wait(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimitError) and error.retry_after:
            return float(min(error.retry_after, max_wait))
        return backoff(retry_state)

    return _wait


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "retry_attempt",
        function=getattr(retry_state.fn, "__name__", None),
        attempt=retry_state.attempt_number,
        error=str(error),
        wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
    )


def retry_with_backoff(
    max_attempts: int = 5,
    min_wait: float = 2,
    max_wait: float = 60,
    retry_on_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable[[F], F]:
    """Decorate a function or coroutine function with retries.

    The last exception is re-raised once ``max_attempts`` calls have failed.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_for_retry_after(min_wait, max_wait),
        retry=retry_if_exception_type(retry_on_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )


# Reads and writes against a registry
retry_api_call = retry_with_backoff(max_attempts=5, min_wait=2, max_wait=60)
# Connectivity checks where a quick answer matters more than persistence
retry_api_call_short = retry_with_backoff(max_attempts=3, min_wait=1, max_wait=10)
