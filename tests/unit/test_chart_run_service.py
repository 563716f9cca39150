"""Tests for the chart run service."""

import asyncio

import pytest

from src.config.constants import PollStatus, StepId, StepState
from src.infrastructure.code_interpreter.client import RunStatus
from src.services.errors import (
    BudgetExceeded,
    DatasetTooLarge,
    ExternalRunFailure,
    MalformedPlan,
    PlanningError,
    PolicyViolation,
    RunNotFound,
    RunTimeout,
    SubmissionError,
)
from tests.fakes import STAGE_QUERY, FakeExecution, make_plan


def _states(steps):
    return {step.id: step.state for step in steps}


class SlowPlanner:
    async def get_plan(self, prompt: str) -> str:
        await asyncio.sleep(1)
        return ""


class FailingPlanner:
    async def get_plan(self, prompt: str) -> str:
        raise PlanningError("Could not generate a plan: overloaded")


@pytest.mark.asyncio
async def test_start_run_success(make_service, record_store, execution, run_store):
    service = make_service(make_plan(STAGE_QUERY))
    result = await service.start_run("Show pipeline by stage")

    assert _states(result.steps) == {
        StepId.PLAN: StepState.COMPLETED,
        StepId.VALIDATE: StepState.COMPLETED,
        StepId.SOQL: StepState.COMPLETED,
        StepId.UPLOAD: StepState.COMPLETED,
        StepId.ASSISTANT: StepState.IN_PROGRESS,
        StepId.SAVE: StepState.PENDING,
    }
    assert result.steps[4].note == "Waiting for the code interpreter run to finish"
    assert [ref.name for ref in result.dataset_refs] == ["dataset_1.csv"]
    assert "WITH SECURITY_ENFORCED GROUP BY" in record_store.queries[0]
    assert len(execution.runs) == 1
    assert run_store.get(result.job_id).handle.run_id == "run_1"


@pytest.mark.asyncio
async def test_planning_failure(make_service, run_store):
    service = make_service("", planner=FailingPlanner())
    with pytest.raises(PlanningError) as exc_info:
        await service.start_run("Show pipeline")
    assert _states(exc_info.value.steps)[StepId.PLAN] is StepState.ERROR
    assert run_store.get_stats()["size"] == 0


@pytest.mark.asyncio
async def test_planning_deadline(make_service, settings):
    settings.plan_timeout = 0.01
    service = make_service("", planner=SlowPlanner())
    with pytest.raises(RunTimeout) as exc_info:
        await service.start_run("Show pipeline")
    assert exc_info.value.step is StepId.PLAN
    assert exc_info.value.http_status == 504


@pytest.mark.asyncio
async def test_malformed_plan(make_service, record_store):
    service = make_service("Sure! Here is your plan: {}")
    with pytest.raises(MalformedPlan) as exc_info:
        await service.start_run("Show pipeline")
    states = _states(exc_info.value.steps)
    assert states[StepId.PLAN] is StepState.COMPLETED
    assert states[StepId.VALIDATE] is StepState.ERROR
    assert record_store.queries == []


@pytest.mark.asyncio
async def test_budget_exceeded_before_any_query(make_service, record_store, execution):
    service = make_service(make_plan(*["SELECT Id FROM Lead"] * 4))
    with pytest.raises(BudgetExceeded):
        await service.start_run("Four charts please")
    assert record_store.queries == []
    assert execution.uploads == []


@pytest.mark.asyncio
async def test_disallowed_object_rejected_without_network(make_service, record_store, execution):
    service = make_service(make_plan("SELECT Id FROM OpportunityHistory"))
    with pytest.raises(PolicyViolation) as exc_info:
        await service.start_run("Show opportunity history")

    detail = exc_info.value.to_detail()
    assert detail["error"] == "PolicyViolation"
    assert detail["step"] == "validate"
    assert "OpportunityHistory" in detail["message"]
    assert [s["state"] for s in detail["steps"]] == [
        "completed",
        "error",
        "pending",
        "pending",
        "pending",
        "pending",
    ]
    assert record_store.queries == []
    assert execution.uploads == []


@pytest.mark.asyncio
async def test_dataset_too_large(make_service, settings):
    settings.max_csv_bytes = 10
    service = make_service(make_plan(STAGE_QUERY))
    with pytest.raises(DatasetTooLarge) as exc_info:
        await service.start_run("Show pipeline")
    assert _states(exc_info.value.steps)[StepId.SOQL] is StepState.ERROR


@pytest.mark.asyncio
async def test_submission_failure(make_service, execution, run_store):
    execution.fail_create = True
    service = make_service(make_plan(STAGE_QUERY))
    with pytest.raises(SubmissionError) as exc_info:
        await service.start_run("Show pipeline")
    states = _states(exc_info.value.steps)
    assert states[StepId.UPLOAD] is StepState.COMPLETED
    assert states[StepId.ASSISTANT] is StepState.ERROR
    assert run_store.get_stats()["size"] == 0


@pytest.mark.asyncio
async def test_poll_run_progress_then_done(make_service):
    execution = FakeExecution(statuses=[RunStatus("queued"), RunStatus("in_progress"), RunStatus("completed")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    started = await service.start_run("Show pipeline")

    queued = await service.poll_run(started.job_id)
    assert queued.outcome.status is PollStatus.QUEUED
    assert queued.steps[4].note == "queued"

    await service.poll_run(started.job_id)
    done = await service.poll_run(started.job_id)
    assert done.outcome.status is PollStatus.DONE
    states = _states(done.steps)
    assert states[StepId.ASSISTANT] is StepState.COMPLETED
    assert states[StepId.SAVE] is StepState.COMPLETED
    assert done.steps[5].note == "Chart saved to storage"

    again = await service.poll_run(started.job_id)
    assert again.outcome == done.outcome
    assert execution.status_calls == 3


@pytest.mark.asyncio
async def test_poll_run_error(make_service):
    execution = FakeExecution(statuses=[RunStatus("failed", "Code execution raised KeyError")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    started = await service.start_run("Show pipeline")

    result = await service.poll_run(started.job_id)
    assert result.outcome.status is PollStatus.ERROR
    assistant = result.steps[4]
    assert assistant.state is StepState.ERROR
    assert assistant.note == "Code execution raised KeyError"


@pytest.mark.asyncio
async def test_poll_unknown_job(make_service):
    service = make_service(make_plan(STAGE_QUERY))
    with pytest.raises(RunNotFound):
        await service.poll_run("nope")


@pytest.mark.asyncio
async def test_mark_timed_out(make_service):
    execution = FakeExecution(statuses=[RunStatus("in_progress")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    started = await service.start_run("Show pipeline")

    result = service.mark_timed_out(started.job_id)
    assert result.outcome.status is PollStatus.TIMEOUT
    assert result.steps[4].state is StepState.ERROR
    assert result.steps[4].note == "Timed out waiting for chart"

    later = await service.poll_run(started.job_id)
    assert later.outcome.status is PollStatus.TIMEOUT
    assert execution.status_calls == 0


@pytest.mark.asyncio
async def test_run_to_completion(make_service):
    execution = FakeExecution(statuses=[RunStatus("in_progress"), RunStatus("completed")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    result = await service.run_to_completion("Show pipeline")
    assert result.outcome.status is PollStatus.DONE
    assert result.outcome.chart_url.endswith("/chart.png")


@pytest.mark.asyncio
async def test_run_to_completion_times_out(make_service, settings):
    settings.poll_max_attempts = 3
    execution = FakeExecution(statuses=[RunStatus("in_progress")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    with pytest.raises(RunTimeout) as exc_info:
        await service.run_to_completion("Show pipeline")
    assert execution.status_calls == 3
    assert _states(exc_info.value.steps)[StepId.ASSISTANT] is StepState.ERROR


@pytest.mark.asyncio
async def test_run_to_completion_failure(make_service):
    execution = FakeExecution(statuses=[RunStatus("expired")])
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    with pytest.raises(ExternalRunFailure) as exc_info:
        await service.run_to_completion("Show pipeline")
    assert exc_info.value.step is StepId.ASSISTANT


class YieldingExecution(FakeExecution):
    """Suspends mid-collection so concurrent polls interleave."""

    async def download_file(self, file_id: str) -> bytes:
        await asyncio.sleep(0)
        return await super().download_file(file_id)


@pytest.mark.asyncio
async def test_concurrent_polls_collect_chart_once(make_service, storage):
    execution = YieldingExecution()
    service = make_service(make_plan(STAGE_QUERY), execution=execution)
    started = await service.start_run("Show pipeline")

    first, second = await asyncio.gather(
        service.poll_run(started.job_id),
        service.poll_run(started.job_id),
    )

    assert first.outcome.status is PollStatus.DONE
    assert second.outcome == first.outcome
    assert execution.downloads == ["img-1"]
    assert execution.status_calls == 1
    assert f"{started.job_id}/chart.png" in storage.saved
