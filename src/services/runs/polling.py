"""Caller-side polling loop with an injected sleep and an attempt ceiling."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from src.config.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    MESSAGE_TIMED_OUT,
    PollStatus,
    StepId,
)
from src.services.runs.models import PollOutcome

logger = logging.getLogger(__name__)


async def poll_until_terminal(
    poll: Callable[[], Awaitable[PollOutcome]],
    *,
    max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    backoff_factor: float = 1.0,
    max_interval: float = 30.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_outcome: Callable[[PollOutcome], None] | None = None,
) -> PollOutcome:
    """
    Call `poll` until it returns a terminal outcome or the ceiling is reached.

    Args:
        poll: Zero-argument coroutine returning the current PollOutcome
        max_attempts: Non-terminal polls tolerated before declaring a timeout
        interval: Initial wait between polls in seconds
        backoff_factor: Multiplier applied to the wait after each poll (1.0 = fixed cadence)
        max_interval: Upper bound for the wait
        sleep: Awaitable sleep, replaceable with a fake clock in tests
        on_outcome: Optional observer called with every outcome

    Returns:
        The terminal outcome, or a `timeout` outcome decided here by the caller
    """
    wait = interval
    for attempt in range(1, max_attempts + 1):
        outcome = await poll()
        if on_outcome is not None:
            on_outcome(outcome)
        if outcome.is_terminal:
            return outcome

        logger.debug(f"Poll {attempt}/{max_attempts}: {outcome.status.value} ({outcome.message})")
        if attempt < max_attempts:
            await sleep(wait)
            wait = min(wait * backoff_factor, max_interval)

    logger.warning(f"No terminal status after {max_attempts} polls; declaring timeout")
    return PollOutcome(
        status=PollStatus.TIMEOUT,
        message=MESSAGE_TIMED_OUT,
        failed_step=StepId.ASSISTANT,
    )
