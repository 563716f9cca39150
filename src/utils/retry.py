"""
Retry utilities for handling rate limits and transient LLM transport errors.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS: tuple[str, ...] = (
    "connection reset",
    "connection timeout",
    "read timeout",
    "temporarily unavailable",
    "overloaded",
)


def is_transient_error(exception: Exception) -> bool:
    """Check if an error is a transport hiccup worth retrying.

    Timeouts and connection failures are transient; HTTP 4xx responses and
    anything else are permanent.
    """
    if isinstance(exception, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    error_str = str(exception).lower()
    return any(marker in error_str for marker in _TRANSIENT_MARKERS)


def is_rate_limit_error(exception: Exception) -> bool:
    error_str = str(exception).lower()
    return "rate limit" in error_str or "rate_limit" in error_str or "429" in error_str


async def run_with_retry(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    initial_delay: float = 5.0,
    backoff_factor: float = 2.0,
    retry_on_rate_limit: bool = True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Execute an async function with retry logic for rate limit and transient errors.

    Args:
        func: Async function to execute (no parameters)
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries
        retry_on_rate_limit: Whether to retry at all
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Result from the function

    Raises:
        Exception: If max retries exceeded or non-retryable error occurs
    """
    for attempt in range(max_retries):
        try:
            return await func()
        except Exception as e:
            should_retry = retry_on_rate_limit and (is_rate_limit_error(e) or is_transient_error(e))
            if not should_retry or attempt >= max_retries - 1:
                raise

            wait_time_match = re.search(r"(\d+)\s{0,10}seconds?", str(e), re.IGNORECASE)
            if wait_time_match:
                wait_time = float(wait_time_match.group(1))
            else:
                wait_time = initial_delay * (backoff_factor**attempt)

            logger.warning(
                "Transient LLM error detected (%s). Attempt %s/%s. Waiting %.1f seconds before retry...",
                e,
                attempt + 1,
                max_retries,
                wait_time,
            )
            await sleep(wait_time)

    raise RuntimeError("run_with_retry called with max_retries < 1")
