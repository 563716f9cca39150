"""Async context manager for timing and logging run stages."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from src.config.constants import StepId
from src.infrastructure.logging.logger import StructuredLogger


class StepContext:
    """Mutable context for a timed stage."""

    def __init__(self, job_id: str | None = None) -> None:
        self.job_id = job_id
        self.state: dict[str, Any] = {}

    def record(self, **values: Any) -> None:
        self.state.update(values)


@asynccontextmanager
async def timed_step(
    step: StepId,
    logger: StructuredLogger,
    *,
    job_id: str | None = None,
) -> AsyncGenerator[StepContext, None]:
    """Time a stage and log its outcome; failures are logged and re-raised."""
    ctx = StepContext(job_id)
    start = time.perf_counter()
    try:
        yield ctx
    except Exception as e:
        logger.log_error(step.value, e, context={"job_id": ctx.job_id, **ctx.state})
        raise
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.log_step(step.value, {"job_id": ctx.job_id, **ctx.state}, duration_ms=elapsed_ms)
