"""Health endpoint."""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_run_store, get_settings_dependency
from src.api.models import HealthResponse
from src.config.settings import Settings
from src.services.runs.store import RunStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    settings: Settings = Depends(get_settings_dependency),
    store: RunStore = Depends(get_run_store),
) -> HealthResponse:
    """Health check."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        active_runs=store.get_stats()["size"],
    )
