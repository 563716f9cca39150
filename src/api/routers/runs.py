"""Chart run endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.dependencies import get_chart_run_service, get_plan_validator
from src.api.models import (
    PlanValidationResponse,
    PollRunResponse,
    StartRunRequest,
    StartRunResponse,
    ValidatedQueryModel,
)
from src.orchestrator.timeline import steps_to_dicts
from src.services.errors import ChartRunError
from src.services.plan.parser import parse_plan
from src.services.plan.validator import PlanValidator
from src.services.runs.models import PollRunResult
from src.services.runs.service import ChartRunService

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(error: ChartRunError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.to_detail())


def _poll_response(result: PollRunResult) -> PollRunResponse:
    return PollRunResponse(
        job_id=result.job_id,
        steps=steps_to_dicts(result.steps),
        **result.outcome.to_dict(),
    )


@router.post("/runs", response_model=StartRunResponse, status_code=201)
async def start_run(
    request: StartRunRequest,
    service: ChartRunService = Depends(get_chart_run_service),
) -> StartRunResponse:
    """Plan, validate, build datasets and submit a chart run."""
    try:
        result = await service.start_run(request.prompt)
    except ChartRunError as e:
        raise _http_error(e) from e

    return StartRunResponse(
        job_id=result.job_id,
        dataset_refs=[ref.to_dict() for ref in result.dataset_refs],
        steps=steps_to_dicts(result.steps),
        created_at=result.created_at,
        warnings=list(result.warnings),
    )


@router.get("/runs/{job_id}", response_model=PollRunResponse)
async def poll_run(
    job_id: str,
    service: ChartRunService = Depends(get_chart_run_service),
) -> PollRunResponse:
    """Poll a run once and return its status and timeline."""
    try:
        result = await service.poll_run(job_id)
    except ChartRunError as e:
        raise _http_error(e) from e
    return _poll_response(result)


@router.post("/runs/{job_id}/timeout", response_model=PollRunResponse)
async def mark_timed_out(
    job_id: str,
    service: ChartRunService = Depends(get_chart_run_service),
) -> PollRunResponse:
    """Record that the caller gave up waiting for the run."""
    try:
        result = service.mark_timed_out(job_id)
    except ChartRunError as e:
        raise _http_error(e) from e
    return _poll_response(result)


@router.post("/plans/validate", response_model=PlanValidationResponse)
async def validate_plan(
    request: Request,
    validator: PlanValidator = Depends(get_plan_validator),
) -> PlanValidationResponse:
    """Dry-run a raw plan JSON body: validate and rewrite queries without executing them."""
    raw = (await request.body()).decode("utf-8", errors="replace")
    try:
        queries = validator.inspect(parse_plan(raw))
    except ChartRunError as e:
        raise _http_error(e) from e

    return PlanValidationResponse(
        is_valid=all(query.is_valid for query in queries),
        queries=[
            ValidatedQueryModel(
                dataset_name=query.dataset_name,
                is_valid=query.is_valid,
                main_object=query.main_object,
                rewritten=query.rewritten,
                row_limit=query.row_limit,
                error=query.error,
                warnings=list(query.warnings),
            )
            for query in queries
        ],
    )
