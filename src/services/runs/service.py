"""
Chart run service.

Drives one request through plan -> validate -> build -> submit, keeps the
step timeline for every run, and answers polls from the stored record.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from src.config.constants import (
    MESSAGE_TIMED_OUT,
    NOTE_CHART_SAVED,
    NOTE_PLANNING,
    NOTE_WAITING_FOR_RUN,
    STEP_ORDER,
    PollStatus,
    StepId,
    StepState,
)
from src.config.policy import QueryPolicy
from src.config.settings import Settings
from src.infrastructure.cache.bounded_cache import BoundedCache
from src.infrastructure.code_interpreter.client import AssistantRegistry, CodeInterpreterClient
from src.infrastructure.logging.logger import StructuredLogger
from src.infrastructure.salesforce.client import SalesforceClient
from src.infrastructure.storage.blob_client import BlobStorageClient
from src.orchestrator.step_timer import timed_step
from src.orchestrator.timeline import StepUpdate, apply_transition, initial_steps
from src.services.datasets.builder import DatasetBuilder, RecordStore
from src.services.errors import ChartRunError, ExternalRunFailure, RunTimeout
from src.services.plan.parser import parse_plan
from src.services.plan.planner import PlanGenerator
from src.services.plan.validator import PlanValidator
from src.services.runs.models import (
    PollOutcome,
    PollRunResult,
    RunRecord,
    StartRunResult,
)
from src.services.runs.orchestrator import ArtifactStore, ExecutionService, JobOrchestrator
from src.services.runs.poller import RunPoller, RunStatusSource
from src.services.runs.polling import poll_until_terminal
from src.services.runs.store import RunStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanSource(Protocol):
    async def get_plan(self, prompt: str) -> str: ...


class CodeExecutionService(ExecutionService, RunStatusSource, Protocol):
    pass


def outcome_updates(outcome: PollOutcome) -> list[StepUpdate]:
    """Timeline updates implied by one poll outcome."""
    if outcome.status is PollStatus.DONE:
        return [
            StepUpdate(StepId.ASSISTANT, StepState.COMPLETED),
            StepUpdate(StepId.SAVE, StepState.COMPLETED, NOTE_CHART_SAVED),
        ]
    if outcome.status in (PollStatus.ERROR, PollStatus.TIMEOUT):
        failed_step = outcome.failed_step or StepId.ASSISTANT
        updates = []
        if failed_step is StepId.SAVE:
            updates.append(StepUpdate(StepId.ASSISTANT, StepState.COMPLETED))
        updates.append(StepUpdate(failed_step, StepState.ERROR, outcome.message))
        return updates
    return [StepUpdate(StepId.ASSISTANT, StepState.IN_PROGRESS, outcome.message)]


class ChartRunService:
    """
    Inbound interface for chart runs.

    Every collaborator is injected so tests can replace the LLM, record
    store, execution service and storage with fakes.
    """

    def __init__(
        self,
        settings: Settings,
        planner: PlanSource,
        record_store: RecordStore,
        execution: CodeExecutionService,
        storage: ArtifactStore,
        store: RunStore,
        outcome_cache: BoundedCache[PollOutcome] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        closeables: list[Any] | None = None,
    ):
        self.settings = settings
        self.policy = QueryPolicy.from_settings(settings)
        self.planner = planner
        self.validator = PlanValidator(self.policy)
        self.builder = DatasetBuilder(record_store, self.policy)
        self.orchestrator = JobOrchestrator(execution, storage)
        self.poller = RunPoller(execution, storage, outcome_cache)
        self.store = store
        self.sleep = sleep
        self.events = StructuredLogger(__name__)
        self._closeables = closeables or []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RunStore,
        outcome_cache: BoundedCache[PollOutcome] | None = None,
        session_token: str | None = None,
        assistants: AssistantRegistry | None = None,
    ) -> "ChartRunService":
        """
        Wire the production adapters.

        `session_token` overrides the configured record-store token. Pass a
        shared `assistants` registry when services are built per request.
        """
        policy = QueryPolicy.from_settings(settings)
        record_store = SalesforceClient(settings, access_token=session_token)
        execution = CodeInterpreterClient(settings, assistants=assistants)
        storage = BlobStorageClient(settings)
        return cls(
            settings=settings,
            planner=PlanGenerator(settings, policy),
            record_store=record_store,
            execution=execution,
            storage=storage,
            store=store,
            outcome_cache=outcome_cache,
            closeables=[record_store, execution, storage],
        )

    async def __aenter__(self) -> "ChartRunService":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        for resource in self._closeables:
            try:
                await resource.close()
            except Exception as e:
                logger.error(f"Error closing {type(resource).__name__}: {e}", exc_info=True)

    async def _with_deadline(self, awaitable: Awaitable[T], timeout: float, step: StepId) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RunTimeout(f"Step '{step.value}' timed out after {timeout:g}s", step=step) from e

    async def start_run(self, prompt: str) -> StartRunResult:
        """
        Plan, validate, build datasets and submit the chart run.

        Nothing is stored unless submission succeeds. On failure the raised
        ChartRunError carries the timeline with the failing step in error.

        Raises:
            ChartRunError: any subclass, attributed to the step that failed
        """
        steps = apply_transition(
            initial_steps(), StepUpdate(StepId.PLAN, StepState.IN_PROGRESS, NOTE_PLANNING)
        )
        current = StepId.PLAN

        try:
            async with timed_step(StepId.PLAN, self.events) as ctx:
                raw = await self._with_deadline(
                    self.planner.get_plan(prompt), self.settings.plan_timeout, StepId.PLAN
                )
                ctx.record(response_chars=len(raw))

            steps = apply_transition(
                steps,
                [
                    StepUpdate(StepId.PLAN, StepState.COMPLETED),
                    StepUpdate(StepId.VALIDATE, StepState.IN_PROGRESS),
                ],
            )
            current = StepId.VALIDATE
            async with timed_step(StepId.VALIDATE, self.events) as ctx:
                plan = parse_plan(raw)
                queries = self.validator.validate(plan)
                ctx.record(datasets=len(queries))

            steps = apply_transition(
                steps,
                [
                    StepUpdate(StepId.VALIDATE, StepState.COMPLETED),
                    StepUpdate(StepId.SOQL, StepState.IN_PROGRESS),
                ],
            )
            current = StepId.SOQL
            async with timed_step(StepId.SOQL, self.events) as ctx:
                artifacts = []
                for query in queries:
                    artifacts.append(
                        await self._with_deadline(
                            self.builder.build(query), self.settings.query_timeout, StepId.SOQL
                        )
                    )
                ctx.record(rows=[artifact.row_count for artifact in artifacts])

            steps = apply_transition(
                steps,
                [
                    StepUpdate(StepId.SOQL, StepState.COMPLETED),
                    StepUpdate(StepId.UPLOAD, StepState.IN_PROGRESS),
                ],
            )
            current = StepId.UPLOAD
            async with timed_step(StepId.UPLOAD, self.events) as ctx:
                handle = await self._with_deadline(
                    self.orchestrator.submit(
                        artifacts, plan.chart, [dataset.purpose for dataset in plan.datasets]
                    ),
                    self.settings.submit_timeout,
                    StepId.UPLOAD,
                )
                ctx.job_id = handle.job_id
                ctx.record(run_id=handle.run_id)
        except ChartRunError as e:
            failed = e.step or current
            updates = []
            if STEP_ORDER.index(failed) > STEP_ORDER.index(current):
                # Uploads succeeded but run creation failed
                updates.append(StepUpdate(current, StepState.COMPLETED))
            updates.append(StepUpdate(failed, StepState.ERROR, e.message))
            e.steps = apply_transition(steps, updates)
            logger.error(f"Run failed at '{failed.value}': {e.message}")
            raise

        steps = apply_transition(
            steps,
            [
                StepUpdate(StepId.PLAN, StepState.COMPLETED),
                StepUpdate(StepId.VALIDATE, StepState.COMPLETED),
                StepUpdate(StepId.SOQL, StepState.COMPLETED),
                StepUpdate(StepId.UPLOAD, StepState.COMPLETED),
                StepUpdate(StepId.ASSISTANT, StepState.IN_PROGRESS, NOTE_WAITING_FOR_RUN),
            ],
        )
        self.store.put(RunRecord(handle=handle, steps=steps))
        logger.info(f"Run {handle.job_id} started")

        return StartRunResult(
            job_id=handle.job_id,
            dataset_refs=handle.dataset_refs,
            steps=steps,
            created_at=handle.created_at,
            warnings=tuple(warning for query in queries for warning in query.warnings),
        )

    async def poll_run(self, job_id: str) -> PollRunResult:
        """
        Poll the external run once and fold the outcome into the timeline.

        Raises:
            RunNotFound: if the job id is unknown or expired
        """
        record = self.store.get(job_id)
        if record.outcome is not None and record.outcome.is_terminal:
            return PollRunResult(job_id=job_id, outcome=record.outcome, steps=record.steps)

        async with self.store.poll_lock(job_id):
            # Another poller may have finished the run while we waited
            record = self.store.get(job_id)
            if record.outcome is not None and record.outcome.is_terminal:
                return PollRunResult(job_id=job_id, outcome=record.outcome, steps=record.steps)

            try:
                outcome = await asyncio.wait_for(
                    self.poller.poll(record.handle), timeout=self.settings.poll_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Job {job_id}: status check timed out")
                outcome = PollOutcome(status=PollStatus.IN_PROGRESS, message="Status check timed out")

            record = self.store.apply(job_id, outcome_updates(outcome), outcome)
        return PollRunResult(job_id=job_id, outcome=outcome, steps=record.steps)

    def mark_timed_out(self, job_id: str) -> PollRunResult:
        """Record the caller's timeout decision; a finished run keeps its outcome."""
        record = self.store.get(job_id)
        if record.outcome is not None and record.outcome.is_terminal:
            return PollRunResult(job_id=job_id, outcome=record.outcome, steps=record.steps)

        outcome = PollOutcome(
            status=PollStatus.TIMEOUT, message=MESSAGE_TIMED_OUT, failed_step=StepId.ASSISTANT
        )
        record = self.store.apply(job_id, outcome_updates(outcome), outcome)
        logger.warning(f"Job {job_id}: caller declared timeout")
        return PollRunResult(job_id=job_id, outcome=outcome, steps=record.steps)

    async def run_to_completion(self, prompt: str) -> PollRunResult:
        """
        Start a run and poll it until it finishes.

        Raises:
            ExternalRunFailure: if the run ends in error
            RunTimeout: if the poll ceiling is reached first
        """
        started = await self.start_run(prompt)

        async def poll_once() -> PollOutcome:
            return (await self.poll_run(started.job_id)).outcome

        outcome = await poll_until_terminal(
            poll_once,
            max_attempts=self.settings.poll_max_attempts,
            interval=self.settings.poll_interval_seconds,
            backoff_factor=self.settings.poll_backoff_factor,
            max_interval=self.settings.poll_max_interval,
            sleep=self.sleep,
        )

        if outcome.status is PollStatus.TIMEOUT:
            result = self.mark_timed_out(started.job_id)
            error: ChartRunError = RunTimeout(result.outcome.message)
        elif outcome.status is PollStatus.ERROR:
            result = PollRunResult(
                job_id=started.job_id,
                outcome=outcome,
                steps=self.store.get(started.job_id).steps,
            )
            error = ExternalRunFailure(outcome.message, step=outcome.failed_step)
        else:
            return PollRunResult(
                job_id=started.job_id,
                outcome=outcome,
                steps=self.store.get(started.job_id).steps,
            )

        error.steps = result.steps
        raise error
