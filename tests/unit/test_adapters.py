"""Tests for the record store, execution service and planner adapters."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.config.constants import StepId, StepState
from src.config.policy import QueryPolicy
from src.config.prompts.assistant import CHART_ASSISTANT_INSTRUCTIONS
from src.infrastructure.code_interpreter.client import (
    AssistantRegistry,
    CodeInterpreterClient,
    _normalize_message,
)
from src.infrastructure.salesforce.client import RecordStoreError, SalesforceClient
from src.services.errors import ExecutionError, PlanningError
from src.services.plan.planner import PlanGenerator
from tests.fakes import STAGE_QUERY, make_plan


def _salesforce(settings, handler) -> SalesforceClient:
    settings.salesforce_instance_url = "https://example.my.salesforce.com"
    client = SalesforceClient(settings, access_token="session-token")
    client._client = httpx.AsyncClient(
        base_url=settings.salesforce_instance_url,
        transport=httpx.MockTransport(handler),
    )
    return client


# ==========================================
#  RECORD STORE
# ==========================================


@pytest.mark.asyncio
async def test_salesforce_query_follows_pages(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/query"):
            assert request.url.params["q"] == "SELECT Id FROM Lead"
            return httpx.Response(
                200,
                json={
                    "done": False,
                    "nextRecordsUrl": "/services/data/v61.0/query/01g-2000",
                    "records": [{"attributes": {"type": "Lead"}, "Id": "1"}],
                },
            )
        return httpx.Response(
            200,
            json={
                "done": True,
                "records": [{"attributes": {}, "Id": "2", "Owner": {"attributes": {}, "Name": "Ann"}}],
            },
        )

    async with _salesforce(settings, handler) as client:
        records = await client.query("SELECT Id FROM Lead")
    assert records == [{"Id": "1"}, {"Id": "2", "Owner": {"Name": "Ann"}}]


@pytest.mark.asyncio
async def test_salesforce_error_body_is_surfaced(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json=[{"message": "No such column 'Foo' on entity 'Account'", "errorCode": "INVALID_FIELD"}],
        )

    client = _salesforce(settings, handler)
    with pytest.raises(RecordStoreError) as exc_info:
        await client.query("SELECT Foo FROM Account")
    assert exc_info.value.error_code == "INVALID_FIELD"
    assert "No such column" in exc_info.value.message
    await client.close()


@pytest.mark.asyncio
async def test_salesforce_timeout(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _salesforce(settings, handler)
    with pytest.raises(RecordStoreError, match="timed out"):
        await client.query("SELECT Id FROM Lead")
    await client.close()


@pytest.mark.asyncio
async def test_salesforce_non_json_success_body(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = _salesforce(settings, handler)
    with pytest.raises(RecordStoreError, match="non-JSON response"):
        await client.query("SELECT Id FROM Lead")
    await client.close()


@pytest.mark.asyncio
async def test_salesforce_unexpected_error_body(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json=["Service Unavailable"])

    client = _salesforce(settings, handler)
    with pytest.raises(RecordStoreError) as exc_info:
        await client.query("SELECT Id FROM Lead")
    assert exc_info.value.message == "Record store returned HTTP 503"
    assert exc_info.value.error_code is None
    await client.close()


@pytest.mark.asyncio
async def test_maintenance_page_fails_soql_step(settings, make_service, execution):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = _salesforce(settings, handler)
    service = make_service(make_plan(STAGE_QUERY), record_store=client)

    with pytest.raises(ExecutionError, match="non-JSON response") as exc_info:
        await service.start_run("Pipeline by stage")
    await client.close()

    states = {step.id: step.state for step in exc_info.value.steps}
    assert states[StepId.SOQL] is StepState.ERROR
    assert states[StepId.VALIDATE] is StepState.COMPLETED
    assert states[StepId.UPLOAD] is StepState.PENDING
    assert execution.uploads == []


@pytest.mark.asyncio
async def test_salesforce_requires_instance_url(settings):
    with pytest.raises(RecordStoreError, match="salesforce_instance_url"):
        await SalesforceClient(settings).query("SELECT Id FROM Lead")


# ==========================================
#  EXECUTION SERVICE
# ==========================================


def test_normalize_message_blocks():
    message = SimpleNamespace(
        role="assistant",
        content=[
            SimpleNamespace(type="image_file", image_file=SimpleNamespace(file_id="img-1")),
            SimpleNamespace(
                type="text",
                text=SimpleNamespace(
                    value="Chart ready.",
                    annotations=[
                        SimpleNamespace(
                            type="file_path",
                            text="sandbox:/mnt/data/chart.png",
                            file_path=SimpleNamespace(file_id="file-9"),
                        )
                    ],
                ),
            ),
        ],
        attachments=[],
    )
    normalized = _normalize_message(message)
    assert normalized.role == "assistant"
    assert normalized.text == "Chart ready."
    assert [a.file_id for a in normalized.attachments] == ["img-1", "file-9"]
    assert all(a.is_image for a in normalized.attachments)


@pytest.mark.asyncio
async def test_get_run_status_reports_last_error(settings):
    sdk = MagicMock()
    sdk.beta.threads.runs.retrieve = AsyncMock(
        return_value=SimpleNamespace(
            status="failed",
            last_error=SimpleNamespace(message="Sandbox crashed"),
            incomplete_details=None,
        )
    )
    client = CodeInterpreterClient(settings, client=sdk)
    status = await client.get_run_status("thread_1", "run_1")
    assert (status.status, status.message) == ("failed", "Sandbox crashed")
    sdk.beta.threads.runs.retrieve.assert_awaited_once_with("run_1", thread_id="thread_1")


@pytest.mark.asyncio
async def test_create_run_attaches_files(settings):
    settings.openai_assistant_id = "asst_1"
    sdk = MagicMock()
    sdk.beta.threads.create_and_run = AsyncMock(return_value=SimpleNamespace(id="run_1", thread_id="thread_1"))
    client = CodeInterpreterClient(settings, client=sdk)

    run = await client.create_run(["file-1", "file-2"], "Make a bar chart")

    assert (run.thread_id, run.run_id) == ("thread_1", "run_1")
    kwargs = sdk.beta.threads.create_and_run.await_args.kwargs
    assert kwargs["assistant_id"] == "asst_1"
    attachments = kwargs["thread"]["messages"][0]["attachments"]
    assert [a["file_id"] for a in attachments] == ["file-1", "file-2"]
    sdk.beta.assistants.create.assert_not_called()


@pytest.mark.asyncio
async def test_requests_share_one_created_assistant(settings):
    sdk = MagicMock()
    sdk.beta.assistants.create = AsyncMock(return_value=SimpleNamespace(id="asst_shared"))
    sdk.beta.threads.create_and_run = AsyncMock(return_value=SimpleNamespace(id="run_1", thread_id="thread_1"))
    registry = AssistantRegistry()

    for instructions in ("Bar chart of leads", "Pie chart of cases"):
        client = CodeInterpreterClient(settings, client=sdk, assistants=registry)
        await client.create_run(["file-1"], instructions)

    sdk.beta.assistants.create.assert_awaited_once()
    assert sdk.beta.assistants.create.await_args.kwargs["instructions"] == CHART_ASSISTANT_INSTRUCTIONS
    runs = sdk.beta.threads.create_and_run.await_args_list
    assert [call.kwargs["assistant_id"] for call in runs] == ["asst_shared", "asst_shared"]
    assert runs[1].kwargs["thread"]["messages"][0]["content"] == "Pie chart of cases"


# ==========================================
#  PLANNER
# ==========================================


@pytest.mark.asyncio
@patch("src.services.plan.planner.run_single_agent", new_callable=AsyncMock)
@patch("src.services.plan.planner.create_anthropic_agent")
async def test_planner_returns_raw_text(mock_create, mock_run, settings):
    mock_run.return_value = '{"datasets": []}'
    generator = PlanGenerator(settings, QueryPolicy.from_settings(settings))

    assert await generator.get_plan("Show leads") == '{"datasets": []}'
    instructions = mock_create.call_args.kwargs["instructions"]
    assert "Opportunity" in instructions
    assert "LIMIT n where n <= 2000" in instructions
    mock_run.assert_awaited_once_with(mock_create.return_value, "Show leads")


@pytest.mark.asyncio
@patch("src.services.plan.planner.run_single_agent", new_callable=AsyncMock)
@patch("src.services.plan.planner.create_anthropic_agent")
async def test_planner_failure_maps_to_planning_error(mock_create, mock_run, settings):
    mock_run.side_effect = RuntimeError("overloaded")
    generator = PlanGenerator(settings, QueryPolicy.from_settings(settings))
    with pytest.raises(PlanningError, match="overloaded"):
        await generator.get_plan("Show leads")
