"""Poll state machine: maps external run status and collects the chart once."""

import logging
from collections.abc import Sequence
from typing import Protocol

from azure.core.exceptions import AzureError

from src.config.constants import (
    CHART_FILE_NAME,
    EXTERNAL_RUN_STATUS_MAP,
    MESSAGE_NO_CHART_IMAGE,
    MESSAGE_RUN_FAILED,
    PNG_CONTENT_TYPE,
    PollStatus,
    StepId,
)
from src.infrastructure.cache.bounded_cache import BoundedCache
from src.infrastructure.code_interpreter.client import (
    CodeInterpreterError,
    MessageAttachment,
    RunMessage,
    RunStatus,
)
from src.services.runs.models import PollOutcome, RunHandle
from src.services.runs.orchestrator import ArtifactStore

logger = logging.getLogger(__name__)

RUN_AUTHOR_ROLE = "assistant"


class RunStatusSource(Protocol):
    async def get_run_status(self, thread_id: str, run_id: str) -> RunStatus: ...

    async def list_messages(self, thread_id: str, run_id: str | None = None) -> list[RunMessage]: ...

    async def download_file(self, file_id: str) -> bytes: ...


def select_chart_image(messages: Sequence[RunMessage]) -> MessageAttachment | None:
    """First image authored by the run itself; user uploads are never selected."""
    for message in messages:
        if message.role != RUN_AUTHOR_ROLE:
            continue
        for attachment in message.attachments:
            if attachment.is_image:
                return attachment
    return None


def select_summary(messages: Sequence[RunMessage]) -> str | None:
    for message in messages:
        if message.role == RUN_AUTHOR_ROLE and message.text:
            return message.text.strip()
    return None


class RunPoller:
    """
    Polls one run per call.

    Terminal outcomes are cached per job id, so repeated polls after
    completion never re-download or re-persist the chart.
    """

    def __init__(
        self,
        source: RunStatusSource,
        storage: ArtifactStore,
        cache: BoundedCache[PollOutcome] | None = None,
    ):
        self.source = source
        self.storage = storage
        self.cache: BoundedCache[PollOutcome] = cache if cache is not None else BoundedCache()

    async def poll(self, handle: RunHandle) -> PollOutcome:
        """Query run status once and map it to a PollOutcome."""
        cached = self.cache.get(handle.job_id)
        if cached is not None:
            return cached

        try:
            status = await self.source.get_run_status(handle.thread_id, handle.run_id)
        except CodeInterpreterError as e:
            logger.warning(f"Job {handle.job_id}: status check failed: {e}")
            return PollOutcome(status=PollStatus.IN_PROGRESS, message=f"Status check failed: {e}")

        mapped = EXTERNAL_RUN_STATUS_MAP.get(status.status)
        if mapped is None:
            logger.warning(f"Job {handle.job_id}: unknown run status '{status.status}'")
            mapped = PollStatus.IN_PROGRESS

        if mapped is PollStatus.DONE:
            outcome = await self._collect(handle)
        elif mapped is PollStatus.ERROR:
            outcome = PollOutcome(
                status=PollStatus.ERROR,
                message=status.message or MESSAGE_RUN_FAILED,
                failed_step=StepId.ASSISTANT,
            )
            logger.error(f"Job {handle.job_id}: run ended with '{status.status}': {outcome.message}")
        else:
            return PollOutcome(status=mapped, message=status.status)

        self.cache.set(handle.job_id, outcome)
        return outcome

    async def _collect(self, handle: RunHandle) -> PollOutcome:
        """Select, download and persist the run's chart image."""
        try:
            messages = await self.source.list_messages(handle.thread_id, handle.run_id)
            image = select_chart_image(messages)
            if image is None:
                logger.error(f"Job {handle.job_id}: {MESSAGE_NO_CHART_IMAGE}")
                return PollOutcome(
                    status=PollStatus.ERROR,
                    message=MESSAGE_NO_CHART_IMAGE,
                    failed_step=StepId.ASSISTANT,
                )
            data = await self.source.download_file(image.file_id)
        except CodeInterpreterError as e:
            logger.error(f"Job {handle.job_id}: collecting output failed: {e}")
            return PollOutcome(status=PollStatus.ERROR, message=str(e), failed_step=StepId.ASSISTANT)

        try:
            chart_url = await self.storage.persist(
                data, PNG_CONTENT_TYPE, f"{handle.job_id}/{CHART_FILE_NAME}"
            )
        except (AzureError, ValueError) as e:
            logger.error(f"Job {handle.job_id}: saving chart failed: {e}", exc_info=True)
            return PollOutcome(
                status=PollStatus.ERROR,
                message=f"Could not save chart: {e}",
                failed_step=StepId.SAVE,
            )

        logger.info(f"Job {handle.job_id}: chart saved to {chart_url}")
        return PollOutcome(
            status=PollStatus.DONE,
            message="completed",
            chart_url=chart_url,
            summary=select_summary(messages),
        )
