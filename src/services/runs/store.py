"""Process-local store of in-flight runs."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from src.infrastructure.cache.bounded_cache import BoundedCache
from src.orchestrator.timeline import StepUpdate, apply_transition
from src.services.errors import RunNotFound
from src.services.runs.models import PollOutcome, RunRecord

logger = logging.getLogger(__name__)


class RunStore:
    """
    Bounded TTL store keyed by job id.

    Records are immutable and replaced whole, so a reader always sees one
    consistent timeline snapshot. `apply` never awaits between reading and
    replacing a record; concurrent pollers of one job serialize on
    `poll_lock`.
    """

    def __init__(self, max_size: int = 500, ttl_seconds: int = 3600):
        self._records: BoundedCache[RunRecord] = BoundedCache(max_size=max_size, ttl_seconds=ttl_seconds)
        self._poll_locks: BoundedCache[asyncio.Lock] = BoundedCache(
            max_size=max_size, ttl_seconds=ttl_seconds
        )

    def put(self, record: RunRecord) -> None:
        self._records.set(record.handle.job_id, record)

    def get(self, job_id: str) -> RunRecord:
        record = self._records.get(job_id)
        if record is None:
            raise RunNotFound(f"Unknown job id: {job_id}")
        return record

    def poll_lock(self, job_id: str) -> asyncio.Lock:
        """Lock held while a job's external run is being polled."""
        lock = self._poll_locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._poll_locks.set(job_id, lock)
        return lock

    def apply(
        self,
        job_id: str,
        updates: StepUpdate | Iterable[StepUpdate],
        outcome: PollOutcome | None = None,
    ) -> RunRecord:
        """Apply timeline updates (and optionally a new outcome) as one replacement."""
        record = self.get(job_id)
        updated = replace(
            record,
            steps=apply_transition(record.steps, updates),
            outcome=outcome if outcome is not None else record.outcome,
        )
        self.put(updated)
        return updated

    def get_stats(self) -> dict[str, Any]:
        return self._records.get_stats()
