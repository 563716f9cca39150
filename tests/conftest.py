"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from src.config.policy import QueryPolicy
from src.config.settings import Settings
from src.infrastructure.cache.bounded_cache import BoundedCache
from src.services.runs.service import ChartRunService
from src.services.runs.store import RunStore
from tests.fakes import FakeExecution, FakePlanner, FakeRecordStore, FakeStorage, no_sleep


@pytest.fixture
def settings():
    """Provide settings fixture."""
    return Settings(_env_file=None)


@pytest.fixture
def policy(settings):
    return QueryPolicy.from_settings(settings)


@pytest.fixture
def stage_records():
    return [
        {"StageName": "Prospecting", "total": 1200.5},
        {"StageName": "Negotiation", "total": 5400},
        {"StageName": "Closed Won", "total": None},
    ]


@pytest.fixture
def record_store(stage_records):
    return FakeRecordStore(stage_records)


@pytest.fixture
def execution():
    return FakeExecution()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def run_store():
    return RunStore(max_size=10, ttl_seconds=60)


@pytest.fixture
def make_service(settings, record_store, execution, storage, run_store):
    """Build a ChartRunService over fakes for a given raw plan."""

    def _make(raw_plan: str, **overrides: Any) -> ChartRunService:
        return ChartRunService(
            settings=overrides.pop("settings", settings),
            planner=overrides.pop("planner", FakePlanner(raw_plan)),
            record_store=overrides.pop("record_store", record_store),
            execution=overrides.pop("execution", execution),
            storage=overrides.pop("storage", storage),
            store=overrides.pop("store", run_store),
            outcome_cache=overrides.pop("outcome_cache", BoundedCache()),
            sleep=overrides.pop("sleep", no_sleep),
        )

    return _make
