"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from src.api.routers import api_router
from src.config.settings import Settings, get_settings
from src.infrastructure.logging.logger import setup_logging

settings = get_settings()

setup_logging(
    level=settings.log_level,
    json_output=not settings.debug,
    silence_noisy_loggers=True,
)

logger = logging.getLogger(__name__)


def _validate_startup_config(settings: Settings) -> None:
    """Validate required configuration at startup."""
    if not settings.anthropic_api_key:
        logger.warning("No anthropic_api_key configured - planning will fail")

    if not settings.salesforce_instance_url:
        logger.warning("salesforce_instance_url is empty - queries will fail")

    if not settings.openai_api_key:
        logger.warning("No openai_api_key configured - chart runs will fail")
    elif not settings.openai_assistant_id:
        logger.info("No openai_assistant_id configured - one assistant will be created on first run")

    if not settings.azure_storage_connection_string and not settings.azure_storage_account_url:
        logger.warning("No Azure storage configured - charts cannot be saved")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup and shutdown lifecycle."""
    logger.info(f"Starting {settings.app_name}")
    _validate_startup_config(settings)
    logger.info(
        f"Query policy: {len(settings.allowed_objects)} objects, "
        f"limit ceiling {settings.row_limit_ceiling}, access clause '{settings.access_clause}'"
    )
    yield
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="Natural language to Salesforce chart pipeline",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials="*" not in settings.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.include_router(api_router, prefix="/api")
