"""Plan models: the structured output of the planning collaborator."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.config.constants import ChartType

_STRICT = ConfigDict(extra="forbid", strict=True, frozen=True)


class DatasetSpec(BaseModel):
    """One dataset the chart needs."""

    model_config = _STRICT

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", max_length=80)
    purpose: str
    query: str = Field(..., min_length=1)


class ChartSpec(BaseModel):
    """Chart intent handed to the code-execution service."""

    model_config = _STRICT

    title: str
    type: ChartType
    spec: dict[str, Any]
    notes: str


class Plan(BaseModel):
    """Plan with datasets and chart intent."""

    model_config = _STRICT

    datasets: list[DatasetSpec] = Field(..., min_length=1)
    chart: ChartSpec

    @model_validator(mode="after")
    def validate_unique_names(self) -> "Plan":
        seen: set[str] = set()
        for dataset in self.datasets:
            if dataset.name in seen:
                raise ValueError(f"duplicate dataset name '{dataset.name}'")
            seen.add(dataset.name)
        return self
