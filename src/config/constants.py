"""
Constants, enums, and static values.
"""

from enum import Enum


class ChartType(str, Enum):
    """Chart types the planner may request."""

    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    COMBO = "combo"


class StepId(str, Enum):
    """Run timeline steps, in execution order."""

    PLAN = "plan"
    VALIDATE = "validate"
    SOQL = "soql"
    UPLOAD = "upload"
    ASSISTANT = "assistant"
    SAVE = "save"


STEP_ORDER: tuple[StepId, ...] = (
    StepId.PLAN,
    StepId.VALIDATE,
    StepId.SOQL,
    StepId.UPLOAD,
    StepId.ASSISTANT,
    StepId.SAVE,
)

STEP_LABELS: dict[StepId, str] = {
    StepId.PLAN: "Plan with LLM",
    StepId.VALIDATE: "Validate plan",
    StepId.SOQL: "Run SOQL & build CSVs",
    StepId.UPLOAD: "Upload datasets",
    StepId.ASSISTANT: "Assistant run (Code Interpreter)",
    StepId.SAVE: "Save chart to storage",
}


class StepState(str, Enum):
    """Per-step progress state."""

    PENDING = "pending"
    IN_PROGRESS = "inprogress"
    COMPLETED = "completed"
    ERROR = "error"


class PollStatus(str, Enum):
    """Normalized run status returned to callers."""

    QUEUED = "queued"
    IN_PROGRESS = "inprogress"
    DONE = "done"
    ERROR = "error"
    TIMEOUT = "timeout"


TERMINAL_POLL_STATUSES: frozenset[PollStatus] = frozenset(
    {PollStatus.DONE, PollStatus.ERROR, PollStatus.TIMEOUT}
)

# External run status -> normalized status. "completed" maps to DONE only
# after the output has been collected.
EXTERNAL_RUN_STATUS_MAP: dict[str, PollStatus] = {
    "queued": PollStatus.QUEUED,
    "in_progress": PollStatus.IN_PROGRESS,
    "cancelling": PollStatus.IN_PROGRESS,
    "completed": PollStatus.DONE,
    "failed": PollStatus.ERROR,
    "cancelled": PollStatus.ERROR,
    "expired": PollStatus.ERROR,
    "incomplete": PollStatus.ERROR,
    "requires_action": PollStatus.ERROR,
}

DATASET_FILE_TEMPLATE = "dataset_{index}.csv"
CHART_FILE_NAME = "chart.png"
CSV_CONTENT_TYPE = "text/csv"
PNG_CONTENT_TYPE = "image/png"

MIN_PROMPT_LENGTH = 3
DEFAULT_POLL_MAX_ATTEMPTS = 36
DEFAULT_POLL_INTERVAL_SECONDS = 5.0

# Step notes shown by the presentation layer
NOTE_PLANNING = "Generating safe plan JSON"
NOTE_WAITING_FOR_RUN = "Waiting for the code interpreter run to finish"
NOTE_CHART_SAVED = "Chart saved to storage"
MESSAGE_RUN_FAILED = "Chart generation failed"
MESSAGE_TIMED_OUT = "Timed out waiting for chart"
MESSAGE_NO_CHART_IMAGE = "Run completed without producing a chart image"
