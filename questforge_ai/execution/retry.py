"""Run-with-backoff wrapper for whole agent invocations.

One attempt is an entire multi-step agent run, so the retry count stays small.
The delay before retry ``n`` (1-based) is ``min(base_delay * 2 ** (n - 1), max_delay)``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from questforge_ai.core.logging_config import get_logger

from .classification import is_transient_error

logger = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], Awaitable[None]]


@dataclass
class RetryOptions:
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 10.0
    is_transient: Callable[[BaseException], bool] = is_transient_error
    on_retry: Optional[OnRetry] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


def compute_delay(retry_number: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * 2 ** (retry_number - 1), max_delay)


async def run_with_backoff(operation: Callable[[], Awaitable[T]], options: Optional[RetryOptions] = None) -> T:
    """
    Run ``operation``, retrying it on transient failures.

    Args:
        operation: Zero-argument callable returning an awaitable; called once per attempt.
        options: Retry bounds, the transient predicate and the retry hook.

    Returns:
        The result of the first successful attempt.

    Raises:
        The original exception when it is not transient or attempts are exhausted.
    """
    opts = options or RetryOptions()

    async def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        next_delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        attempt = retry_state.attempt_number
        logger.warning(f"Transient failure on attempt {attempt}/{opts.max_retries + 1}, retrying in {next_delay}s: {exc}")
        if opts.on_retry is not None and exc is not None:
            await opts.on_retry(attempt, exc, next_delay)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(opts.max_retries + 1),
        wait=wait_exponential(multiplier=opts.base_delay, max=opts.max_delay),
        retry=retry_if_exception(opts.is_transient),
        before_sleep=before_sleep,
        sleep=opts.sleep,
        reraise=True,
    )

    async def attempt() -> T:
        return await operation()

    return await retrying(attempt)
