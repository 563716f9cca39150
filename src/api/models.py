"""Request/Response models for API endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.config.constants import MIN_PROMPT_LENGTH


class StartRunRequest(BaseModel):
    """Request model for starting a chart run."""

    prompt: str = Field(..., description="Natural language chart request")

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < MIN_PROMPT_LENGTH:
            raise ValueError(f"prompt must be at least {MIN_PROMPT_LENGTH} characters")
        return stripped


class StepModel(BaseModel):
    id: str
    label: str
    state: str
    note: str | None = None


class DatasetRefModel(BaseModel):
    name: str = Field(..., description="Uploaded file name (dataset_<n>.csv)")
    file_id: str = Field(..., description="Execution service file id")
    url: str | None = Field(None, description="Download URL in durable storage")


class StartRunResponse(BaseModel):
    """Response model for a started run."""

    job_id: str
    dataset_refs: list[DatasetRefModel]
    steps: list[StepModel]
    created_at: datetime
    warnings: list[str] = []


class PollRunResponse(BaseModel):
    """Response model for a run poll."""

    job_id: str
    status: str = Field(..., description="queued | inprogress | done | error | timeout")
    message: str
    chart_url: str | None = None
    summary: str | None = None
    steps: list[StepModel]


class ValidatedQueryModel(BaseModel):
    dataset_name: str
    is_valid: bool
    main_object: str | None = None
    rewritten: str | None = None
    row_limit: int | None = None
    error: str | None = None
    warnings: list[str] = []


class PlanValidationResponse(BaseModel):
    """Dry-run validation result for a plan."""

    is_valid: bool
    queries: list[ValidatedQueryModel]


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Application version")
    active_runs: int = Field(0, description="Runs held in the run store")
