"""Application settings using Pydantic BaseSettings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "NL Chart Service"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_VALID_LOG_LEVELS}, got '{v}'")
        return upper

    @model_validator(mode="after")
    def validate_timeouts_positive(self) -> "Settings":
        for field_name in (
            "plan_timeout",
            "query_timeout",
            "submit_timeout",
            "poll_timeout",
            "salesforce_timeout",
            "openai_timeout",
            "poll_interval_seconds",
        ):
            value = getattr(self, field_name)
            if value <= 0:
                raise ValueError(f"{field_name} must be positive, got {value}")
        return self

    @model_validator(mode="after")
    def validate_budgets(self) -> "Settings":
        for field_name in ("row_limit_ceiling", "max_datasets", "max_csv_bytes", "poll_max_attempts"):
            value = getattr(self, field_name)
            if value < 1:
                raise ValueError(f"{field_name} must be at least 1, got {value}")
        if not self.allowed_objects:
            raise ValueError("allowed_objects must list at least one object")
        return self

    @model_validator(mode="after")
    def warn_wildcard_origins(self) -> "Settings":
        if self.allowed_origins == ["*"]:
            logging.getLogger(__name__).warning(
                "allowed_origins is set to ['*'] - consider restricting in production"
            )
        return self

    # Planner Agent (Anthropic)
    anthropic_api_key: str | None = None
    planner_agent_model: str = "claude-sonnet-4-5"
    planner_max_tokens: int = 2048

    # Query policy
    allowed_objects: list[str] = [
        "Account",
        "Contact",
        "Lead",
        "Opportunity",
        "Case",
        "Campaign",
        "Task",
        "Event",
    ]
    row_limit_ceiling: int = 2000
    max_datasets: int = 3
    max_csv_bytes: int = 2_000_000
    access_clause: Literal["WITH SECURITY_ENFORCED", "WITH USER_MODE"] = "WITH SECURITY_ENFORCED"
    pii_guard_mode: Literal["reject", "flag", "off"] = "reject"
    sensitive_fields: list[str] = [
        "SSN__c",
        "Social_Security_Number__c",
        "Birthdate",
        "TaxId__c",
    ]

    # Record store (Salesforce REST)
    salesforce_instance_url: str = ""
    salesforce_api_version: str = "61.0"
    salesforce_access_token: str = ""
    salesforce_timeout: float = 30.0

    # Code execution service (OpenAI Assistants + Code Interpreter)
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_assistant_id: str = ""
    openai_model: str = "gpt-4o"
    openai_timeout: float = 60.0

    # Durable storage (Azure Blob Storage)
    azure_storage_connection_string: str = ""
    azure_storage_account_url: str = ""
    azure_storage_container_name: str = "charts"

    # Per-stage deadlines (seconds)
    plan_timeout: float = 60.0
    query_timeout: float = 60.0
    submit_timeout: float = 120.0
    poll_timeout: float = 30.0

    # Caller-side polling
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 36
    poll_backoff_factor: float = 1.0
    poll_max_interval: float = 30.0

    # Run store
    run_store_max_size: int = 500
    run_store_ttl: int = 3600

    # CORS
    allowed_origins: list[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
