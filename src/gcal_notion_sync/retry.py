"""
Exponential-backoff retry for remote mutations.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import RetryCallState
from tenacity import Retrying
from tenacity import retry_if_exception
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from gcal_notion_sync.errors import is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0

RetryHook = Callable[[BaseException, int], None]


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Delay in seconds before retry ``attempt`` (0-indexed)."""
    return min(initial_delay * 2**attempt, max_delay)


def retry_with_backoff(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    on_retry: RetryHook | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``operation`` until it succeeds, retrying retryable errors.

    A non-retryable error is raised from the first attempt. After
    ``max_retries`` retries the last error is raised unchanged. ``on_retry``
    receives the error and the 1-indexed retry number before each sleep.
    """

    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception()
        logger.warning(
            f"Attempt {state.attempt_number}/{max_retries + 1} failed: {exc}; "
            f"retrying in {state.next_action.sleep:.1f}s"
        )
        if on_retry is None:
            return
        try:
            on_retry(exc, state.attempt_number)
        except Exception as hook_error:
            logger.warning(f"on_retry hook raised: {hook_error}")

    retrying = Retrying(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay),
        before_sleep=before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)


class RetryOptions:
    """Retry parameters carried by long-lived components."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def run(self, operation: Callable[[], T], on_retry: RetryHook | None = None) -> T:
        return retry_with_backoff(
            operation,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            on_retry=on_retry,
            sleep=self.sleep,
        )
