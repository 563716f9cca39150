"""Job orchestrator: uploads datasets and starts the external chart run."""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from azure.core.exceptions import AzureError

from src.config.constants import CSV_CONTENT_TYPE, DATASET_FILE_TEMPLATE, StepId
from src.config.prompts.assistant import build_chart_instructions
from src.infrastructure.code_interpreter.client import CodeInterpreterError, ExternalRun
from src.services.datasets.models import DatasetArtifact
from src.services.errors import SubmissionError
from src.services.plan.models import ChartSpec
from src.services.runs.models import DatasetRef, RunHandle

logger = logging.getLogger(__name__)


class ExecutionService(Protocol):
    async def upload_file(self, name: str, data: bytes) -> str: ...

    async def create_run(self, file_ids: list[str], instructions: str) -> ExternalRun: ...


class ArtifactStore(Protocol):
    async def persist(self, data: bytes, content_type: str, name: str) -> str: ...


class JobOrchestrator:
    """
    Submits dataset artifacts and chart instructions as one external run.

    Submission never waits for the run to finish; the returned handle is
    polled separately.
    """

    def __init__(self, execution: ExecutionService, storage: ArtifactStore | None = None):
        self.execution = execution
        self.storage = storage

    async def submit(
        self,
        artifacts: Sequence[DatasetArtifact],
        chart: ChartSpec,
        purposes: Sequence[str] | None = None,
    ) -> RunHandle:
        """
        Upload every artifact and create the run.

        Args:
            artifacts: Built datasets, in plan order
            chart: Chart intent
            purposes: Optional dataset purposes, aligned with `artifacts`

        Returns:
            RunHandle for polling

        Raises:
            SubmissionError: attributed to `upload` or `assistant`
        """
        job_id = uuid.uuid4().hex
        refs: list[DatasetRef] = []

        for index, artifact in enumerate(artifacts, start=1):
            file_name = DATASET_FILE_TEMPLATE.format(index=index)
            try:
                file_id = await self.execution.upload_file(file_name, artifact.content)
            except CodeInterpreterError as e:
                raise SubmissionError(str(e), step=StepId.UPLOAD) from e

            url = None
            if self.storage is not None:
                try:
                    url = await self.storage.persist(
                        artifact.content, CSV_CONTENT_TYPE, f"{job_id}/{file_name}"
                    )
                except (AzureError, ValueError) as e:
                    logger.error(f"Persisting {file_name} failed: {e}", exc_info=True)
                    raise SubmissionError(
                        f"Could not store {file_name}: {e}", step=StepId.UPLOAD
                    ) from e
            refs.append(DatasetRef(name=file_name, file_id=file_id, url=url))

        aligned_purposes = list(purposes or [])
        aligned_purposes += [""] * (len(artifacts) - len(aligned_purposes))
        instructions = build_chart_instructions(
            chart,
            [
                (ref.name, artifact.name, purpose)
                for ref, artifact, purpose in zip(refs, artifacts, aligned_purposes)
            ],
        )

        try:
            run = await self.execution.create_run([ref.file_id for ref in refs], instructions)
        except CodeInterpreterError as e:
            raise SubmissionError(str(e), step=StepId.ASSISTANT) from e

        logger.info(f"Job {job_id} submitted: run {run.run_id}, {len(refs)} dataset(s)")
        return RunHandle(
            job_id=job_id,
            thread_id=run.thread_id,
            run_id=run.run_id,
            dataset_refs=tuple(refs),
            created_at=datetime.now(timezone.utc),
        )
