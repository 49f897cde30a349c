"""Timeout and retry-with-backoff wrappers for external calls.

``with_timeout`` abandons the wait on a slow call; ``retry_with_backoff``
re-runs a call on transient failures with exponentially growing delays.
Compose them as ``retry_with_backoff(lambda: with_timeout(call, t))`` so
each attempt gets its own time budget.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from policyrag.exceptions import LLMTimeoutError, is_retryable

if TYPE_CHECKING:
    from collections.abc import Callable

    from tenacity import RetryCallState

    from policyrag.config import RetryConfig

__all__ = ["retry_from_config", "retry_with_backoff", "with_timeout"]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def with_timeout(
    fn: Callable[[], _T],
    timeout_s: float,
    message: str = "Operation timed out",
) -> _T:
    """Run *fn* on a worker thread and wait at most *timeout_s* seconds.

    The underlying call is not cancelled when the wait is abandoned; it
    keeps running on a daemon thread, which does not hold up interpreter
    exit, and its result is discarded.

    Raises:
        LLMTimeoutError: If *fn* does not finish in time.
    """
    outcome: dict[str, Any] = {}
    done = threading.Event()

    def _run() -> None:
        try:
            outcome["value"] = fn()
        except BaseException as e:
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=_run, name="policyrag-call", daemon=True).start()
    if not done.wait(timeout_s):
        logger.warning("%s after %.1fs", message, timeout_s)
        raise LLMTimeoutError(message, timeout_s=timeout_s)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def retry_with_backoff(
    fn: Callable[[], _T],
    *,
    max_retries: int = 3,
    initial_delay_s: float = 1.0,
    max_delay_s: float = 10.0,
    factor: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """Call *fn*, retrying transient failures with exponential backoff.

    Attempt ``n`` (1-based) that fails with a retryable error is followed by
    a delay of ``initial_delay_s * factor ** (n - 1)`` capped at
    ``max_delay_s``; at most ``max_retries`` retries are made. Errors for
    which *should_retry* is False propagate immediately, and the last error
    propagates once retries are exhausted.

    Args:
        on_retry: Called as ``on_retry(attempt, error, delay_s)`` before each sleep.
        sleep: Sleep function, injectable for tests.
    """

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "Attempt %d failed: %s. Retrying in %.2fs...", state.attempt_number, exc, delay
        )
        if on_retry is not None and exc is not None:
            on_retry(state.attempt_number, exc, delay)

    retrying = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay_s, exp_base=factor, max=max_delay_s),
        retry=retry_if_exception(should_retry),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)


def retry_from_config(
    fn: Callable[[], _T],
    config: RetryConfig,
    *,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """``retry_with_backoff`` with the delays of a ``[retry]`` config section."""
    return retry_with_backoff(
        fn,
        max_retries=config.max_retries,
        initial_delay_s=config.initial_delay_s,
        max_delay_s=config.max_delay_s,
        factor=config.factor,
        on_retry=on_retry,
        sleep=sleep,
    )
