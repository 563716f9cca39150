"""FastAPI dependencies."""

from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Depends, Header

from src.config.policy import QueryPolicy
from src.config.settings import Settings, get_settings
from src.infrastructure.cache.bounded_cache import BoundedCache
from src.infrastructure.code_interpreter.client import AssistantRegistry
from src.services.plan.validator import PlanValidator
from src.services.runs.models import PollOutcome
from src.services.runs.service import ChartRunService
from src.services.runs.store import RunStore


@lru_cache
def get_settings_dependency() -> Settings:
    """Get settings as a FastAPI dependency."""
    return get_settings()


@lru_cache
def get_run_store() -> RunStore:
    """Process-wide run store, shared by every request."""
    settings = get_settings()
    return RunStore(max_size=settings.run_store_max_size, ttl_seconds=settings.run_store_ttl)


@lru_cache
def get_outcome_cache() -> BoundedCache[PollOutcome]:
    """Process-wide cache of terminal poll outcomes."""
    settings = get_settings()
    return BoundedCache(max_size=settings.run_store_max_size, ttl_seconds=settings.run_store_ttl)


@lru_cache
def get_assistant_registry() -> AssistantRegistry:
    """Process-wide registry so every request reuses the same assistant."""
    return AssistantRegistry()


async def get_chart_run_service(
    settings: Settings = Depends(get_settings_dependency),
    store: RunStore = Depends(get_run_store),
    outcome_cache: BoundedCache[PollOutcome] = Depends(get_outcome_cache),
    assistants: AssistantRegistry = Depends(get_assistant_registry),
    x_salesforce_session: str | None = Header(default=None),
) -> AsyncIterator[ChartRunService]:
    """Per-request service; adapters are closed when the request ends."""
    async with ChartRunService.from_settings(
        settings,
        store,
        outcome_cache=outcome_cache,
        session_token=x_salesforce_session,
        assistants=assistants,
    ) as service:
        yield service


def get_plan_validator(settings: Settings = Depends(get_settings_dependency)) -> PlanValidator:
    """Validator for dry runs; needs no external adapters."""
    return PlanValidator(QueryPolicy.from_settings(settings))
