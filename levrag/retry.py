"""Retry policy for calls to the embedding and completion providers.

Only transient failures are retried: timeouts, connection errors and 5xx
responses. Client errors and malformed payloads fail on the first attempt.
Backoff between attempts is ``min(base * 2 ** (attempt - 1), max_delay)``.
"""

from collections.abc import Callable

import openai
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import config

logger = config.get_logger(__name__)


def is_transient_error(exception: BaseException) -> bool:
    """Decide whether a failed provider call is worth another attempt.

    Returns:
        True for timeouts, connection errors and 5xx status errors.
    """
    if isinstance(exception, (TimeoutError, openai.APITimeoutError)):
        return True
    if isinstance(exception, openai.APIConnectionError):
        return True
    if isinstance(exception, openai.APIStatusError):
        return exception.status_code >= 500
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    fn_name = getattr(retry_state.fn, "__name__", "unknown")
    wait_time = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Attempt %d for %s failed (%s: %s); retrying in %.1fs",
        retry_state.attempt_number,
        fn_name,
        type(exc).__name__ if exc else None,
        exc,
        wait_time,
    )


def create_retry_decorator(
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
) -> Callable:
    """Create a retry decorator with exponential backoff.

    Works for plain functions and coroutines alike.

    Args:
        max_attempts: Total attempts including the first (default from config).
        base_delay: Delay in seconds before the second attempt.
        max_delay: Upper bound for any single delay.

    Returns:
        Configured tenacity retry decorator.
    """
    attempts = config.RETRY_MAX_ATTEMPTS if max_attempts is None else max_attempts
    base = config.RETRY_BASE_DELAY if base_delay is None else base_delay
    ceiling = config.RETRY_MAX_DELAY if max_delay is None else max_delay

    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base, max=ceiling),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        reraise=True,
    )
