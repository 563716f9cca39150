"""Step timeline model: a pure reducer over the run's ordered steps."""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from src.config.constants import STEP_LABELS, STEP_ORDER, StepId, StepState

_RANK: dict[StepState, int] = {
    StepState.PENDING: 0,
    StepState.IN_PROGRESS: 1,
    StepState.COMPLETED: 2,
    StepState.ERROR: 2,
}

_FINAL_STATES = frozenset({StepState.COMPLETED, StepState.ERROR})


@dataclass(frozen=True)
class Step:
    """One entry of the run timeline."""

    id: StepId
    label: str
    state: StepState = StepState.PENDING
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.value,
            "label": self.label,
            "state": self.state.value,
            "note": self.note,
        }


@dataclass(frozen=True)
class StepUpdate:
    """Requested state change for one step."""

    id: StepId
    state: StepState
    note: str | None = None


Timeline = tuple[Step, ...]


def initial_steps() -> Timeline:
    """All six steps in execution order, pending."""
    return tuple(Step(id=step_id, label=STEP_LABELS[step_id]) for step_id in STEP_ORDER)


def has_error(steps: Timeline) -> bool:
    return any(step.state is StepState.ERROR for step in steps)


def _apply_one(steps: list[Step], update: StepUpdate) -> None:
    if has_error(tuple(steps)):
        # Fail-fast: once any step failed, the timeline is frozen
        return
    for idx, step in enumerate(steps):
        if step.id is not update.id:
            continue
        if step.state in _FINAL_STATES:
            return
        if _RANK[update.state] < _RANK[step.state]:
            return
        steps[idx] = replace(step, state=update.state, note=update.note or step.note)
        return


def apply_transition(steps: Timeline, updates: StepUpdate | Iterable[StepUpdate]) -> Timeline:
    """
    Apply one update or a batch of updates and return a new snapshot.

    Updates never lower a step's state, completed and error are final for a
    step, and nothing changes after any step has reached error. A batch is
    applied in order to a private copy, so callers only ever observe whole
    snapshots.
    """
    batch = [updates] if isinstance(updates, StepUpdate) else list(updates)
    working = list(steps)
    for update in batch:
        _apply_one(working, update)
    return tuple(working)


def steps_to_dicts(steps: Timeline) -> list[dict[str, Any]]:
    return [step.to_dict() for step in steps]
