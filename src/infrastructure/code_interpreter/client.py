"""OpenAI Assistants (Code Interpreter) transport adapter."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from src.config.prompts.assistant import CHART_ASSISTANT_INSTRUCTIONS
from src.config.settings import Settings

logger = logging.getLogger(__name__)

_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")


class CodeInterpreterError(Exception):
    """Raised when the execution service rejects or fails a request."""


@dataclass(frozen=True)
class ExternalRun:
    """Identifiers of a created run."""

    thread_id: str
    run_id: str


@dataclass(frozen=True)
class RunStatus:
    """Raw run status as reported by the service."""

    status: str
    message: str | None = None


@dataclass(frozen=True)
class MessageAttachment:
    """A file referenced by a run message."""

    file_id: str
    kind: str  # "image" for inline image blocks, "file" otherwise
    filename: str | None = None

    @property
    def is_image(self) -> bool:
        if self.kind == "image":
            return True
        return bool(self.filename and self.filename.lower().endswith(_IMAGE_SUFFIXES))


@dataclass(frozen=True)
class RunMessage:
    """One thread message, normalized."""

    role: str
    attachments: tuple[MessageAttachment, ...] = field(default_factory=tuple)
    text: str | None = None


class AssistantRegistry:
    """
    Assistant ids created by this process, one per model.

    Shared across requests so runs reuse a single assistant instead of
    creating one each.
    """

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, model: str, create: Callable[[], Awaitable[str]]) -> str:
        if model in self._ids:
            return self._ids[model]
        async with self._lock:
            if model not in self._ids:
                self._ids[model] = await create()
            return self._ids[model]


class CodeInterpreterClient:
    """
    Thin adapter over the OpenAI files and Assistants thread/run endpoints.

    Base64 or multipart framing is handled by the SDK; callers pass raw bytes.
    The SDK's own retries are disabled: the service decides what is terminal.
    Without a configured `openai_assistant_id`, one assistant is created per
    model and shared through `assistants`.
    """

    def __init__(
        self,
        settings: Settings,
        client: AsyncOpenAI | None = None,
        assistants: AssistantRegistry | None = None,
    ):
        self.settings = settings
        self._client = client
        self._assistants = assistants if assistants is not None else AssistantRegistry()

    def _get_client(self) -> AsyncOpenAI:
        """Create the SDK client on first use; a missing key surfaces as OpenAIError."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key or None,
                base_url=self.settings.openai_base_url,
                timeout=self.settings.openai_timeout,
                max_retries=0,
            )
        return self._client

    async def upload_file(self, name: str, data: bytes) -> str:
        """Upload a file for code-interpreter use and return its file id."""
        try:
            uploaded = await self._get_client().files.create(file=(name, data), purpose="assistants")
        except OpenAIError as e:
            logger.error(f"File upload failed for '{name}': {e}")
            raise CodeInterpreterError(f"Upload of {name} failed: {e}") from e
        logger.info(f"Uploaded '{name}' as {uploaded.id}")
        return uploaded.id

    async def _create_assistant(self) -> str:
        assistant = await self._get_client().beta.assistants.create(
            model=self.settings.openai_model,
            name="NL Chart Builder",
            instructions=CHART_ASSISTANT_INSTRUCTIONS,
            tools=[{"type": "code_interpreter"}],
        )
        logger.info(f"Created assistant {assistant.id} for model {self.settings.openai_model}")
        return assistant.id

    async def _ensure_assistant(self) -> str:
        if self.settings.openai_assistant_id:
            return self.settings.openai_assistant_id
        return await self._assistants.get_or_create(self.settings.openai_model, self._create_assistant)

    async def create_run(self, file_ids: list[str], instructions: str) -> ExternalRun:
        """Create a thread with the datasets attached and start a run on it."""
        try:
            assistant_id = await self._ensure_assistant()
            run = await self._get_client().beta.threads.create_and_run(
                assistant_id=assistant_id,
                thread={
                    "messages": [
                        {
                            "role": "user",
                            "content": instructions,
                            "attachments": [
                                {"file_id": file_id, "tools": [{"type": "code_interpreter"}]}
                                for file_id in file_ids
                            ],
                        }
                    ]
                },
            )
        except OpenAIError as e:
            logger.error(f"Run creation failed: {e}")
            raise CodeInterpreterError(f"Run creation failed: {e}") from e
        logger.info(f"Started run {run.id} on thread {run.thread_id}")
        return ExternalRun(thread_id=run.thread_id, run_id=run.id)

    async def get_run_status(self, thread_id: str, run_id: str) -> RunStatus:
        """Fetch the current status of a run."""
        try:
            run = await self._get_client().beta.threads.runs.retrieve(run_id, thread_id=thread_id)
        except OpenAIError as e:
            raise CodeInterpreterError(f"Status check failed: {e}") from e

        message = None
        if run.last_error is not None:
            message = run.last_error.message
        elif run.incomplete_details is not None:
            message = f"Run incomplete: {run.incomplete_details.reason}"
        return RunStatus(status=run.status, message=message)

    async def list_messages(self, thread_id: str, run_id: str | None = None) -> list[RunMessage]:
        """List thread messages oldest-first, normalized to role + attachments."""
        params: dict[str, Any] = {"thread_id": thread_id, "order": "asc"}
        if run_id:
            params["run_id"] = run_id
        messages: list[RunMessage] = []
        try:
            async for message in self._get_client().beta.threads.messages.list(**params):
                messages.append(_normalize_message(message))
        except OpenAIError as e:
            raise CodeInterpreterError(f"Message listing failed: {e}") from e
        return messages

    async def download_file(self, file_id: str) -> bytes:
        """Download a file's bytes."""
        try:
            response = await self._get_client().files.content(file_id)
        except OpenAIError as e:
            raise CodeInterpreterError(f"Download of {file_id} failed: {e}") from e
        return response.content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def _normalize_message(message: Any) -> RunMessage:
    attachments: list[MessageAttachment] = []
    texts: list[str] = []
    for block in message.content or []:
        if block.type == "image_file":
            attachments.append(MessageAttachment(file_id=block.image_file.file_id, kind="image"))
        elif block.type == "text":
            texts.append(block.text.value)
            for annotation in block.text.annotations or []:
                if annotation.type == "file_path":
                    attachments.append(
                        MessageAttachment(
                            file_id=annotation.file_path.file_id,
                            kind="file",
                            filename=annotation.text.rsplit("/", 1)[-1],
                        )
                    )
    for attachment in message.attachments or []:
        if attachment.file_id:
            attachments.append(MessageAttachment(file_id=attachment.file_id, kind="file"))

    return RunMessage(
        role=message.role,
        attachments=tuple(attachments),
        text="\n".join(texts) or None,
    )
