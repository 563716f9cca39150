"""Run service models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.config.constants import TERMINAL_POLL_STATUSES, PollStatus, StepId
from src.orchestrator.timeline import Timeline


@dataclass(frozen=True)
class DatasetRef:
    """Where one uploaded dataset lives."""

    name: str
    file_id: str
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "file_id": self.file_id, "url": self.url}


@dataclass(frozen=True)
class RunHandle:
    """Opaque handle for an in-flight external run."""

    job_id: str
    thread_id: str
    run_id: str
    dataset_refs: tuple[DatasetRef, ...]
    created_at: datetime


@dataclass(frozen=True)
class PollOutcome:
    """Normalized status of an external run."""

    status: PollStatus
    message: str
    chart_url: str | None = None
    summary: str | None = None
    failed_step: StepId | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_POLL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "chart_url": self.chart_url,
            "summary": self.summary,
        }


@dataclass(frozen=True)
class RunRecord:
    """Everything a paused polling loop needs to resume: handle, steps, last outcome."""

    handle: RunHandle
    steps: Timeline
    outcome: PollOutcome | None = None


@dataclass(frozen=True)
class StartRunResult:
    job_id: str
    dataset_refs: tuple[DatasetRef, ...]
    steps: Timeline
    created_at: datetime
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PollRunResult:
    job_id: str
    outcome: PollOutcome
    steps: Timeline
