"""API sub-routers assembled into a single api_router."""

from fastapi import APIRouter

from src.api.routers.health import router as health_router
from src.api.routers.runs import router as runs_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(runs_router, tags=["runs"])
