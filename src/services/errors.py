"""Error taxonomy for chart runs.

Every error is terminal for the current run and names the timeline step it
is attributed to, so callers can mark exactly that step as failed.
"""

from typing import Any

from src.config.constants import StepId


class ChartRunError(Exception):
    """Base class for all run failures."""

    kind: str = "ChartRunError"
    step: StepId | None = None
    default_message: str = "Chart run failed"
    http_status: int = 500

    def __init__(self, message: str | None = None, *, step: StepId | None = None):
        self.message = message or self.default_message
        if step is not None:
            self.step = step
        # Timeline snapshot at the moment of failure, attached by the run service
        self.steps: tuple[Any, ...] = ()
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        """Serializable error payload for API responses."""
        return {
            "error": self.kind,
            "message": self.message,
            "step": self.step.value if self.step else None,
            "steps": [
                step.to_dict() if hasattr(step, "to_dict") else step for step in self.steps
            ],
        }


class PlanningError(ChartRunError):
    kind = "PlanningError"
    step = StepId.PLAN
    default_message = "Could not generate a plan"
    http_status = 502


class MalformedPlan(ChartRunError):
    kind = "MalformedPlan"
    step = StepId.VALIDATE
    default_message = "The plan is not valid JSON in the expected shape"
    http_status = 422


class PolicyViolation(ChartRunError):
    kind = "PolicyViolation"
    step = StepId.VALIDATE
    default_message = "The plan violates the query policy"
    http_status = 422


class BudgetExceeded(PolicyViolation):
    kind = "BudgetExceeded"
    default_message = "The plan requests too many datasets"


class DatasetTooLarge(ChartRunError):
    kind = "DatasetTooLarge"
    step = StepId.SOQL
    default_message = "A dataset exceeds the size budget"
    http_status = 422


class ExecutionError(ChartRunError):
    kind = "ExecutionError"
    step = StepId.SOQL
    default_message = "Query execution failed"
    http_status = 502


class SubmissionError(ChartRunError):
    kind = "SubmissionError"
    step = StepId.UPLOAD
    default_message = "Could not submit the chart run"
    http_status = 502


class ExternalRunFailure(ChartRunError):
    kind = "ExternalRunFailure"
    step = StepId.ASSISTANT
    default_message = "Chart generation failed"
    http_status = 502


class RunTimeout(ChartRunError):
    kind = "Timeout"
    step = StepId.ASSISTANT
    default_message = "Timed out waiting for chart"
    http_status = 504


class RunNotFound(ChartRunError):
    kind = "RunNotFound"
    default_message = "Unknown job id"
    http_status = 404
