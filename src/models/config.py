"""Application configuration model using pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    directory_base_url: str
    prefect_base_url: str
    directory_api_key: str | None = None
    directory_user_id: str = "batch-orchestrator"
    directory_timeout_seconds: float = 10.0
    prefect_timeout_seconds: float = 30.0
    sync_deployment_name: str = "sync-to-mysql"
    workflow_deployment_template: str = "{workflow_key}-deployment"
    database_path: str = "data/batches.db"
    log_level: str = "INFO"
    log_json: bool = False
    default_concurrency: int = 3
    max_concurrency: int = 20
    job_poll_interval_seconds: float = 5.0
    await_job_completion: bool = True
    fail_batch_on_target_failure: bool = False
    stale_after_minutes: int = 30
    api_host: str = "0.0.0.0"
    api_port: int = 9180

    @field_validator("directory_base_url", "prefect_base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Base URLs must be http(s) and are stored without a trailing slash."""
        stripped = value.strip()
        if not stripped.startswith(("http://", "https://")):
            msg = "base URLs must start with http:// or https://"
            raise ValueError(msg)
        return stripped.rstrip("/")

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Ensure parent directory exists, creating it if necessary."""
        if value != ":memory:":
            Path(value).parent.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Log level must be a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            msg = f"log_level must be one of {', '.join(sorted(valid_levels))}"
            raise ValueError(msg)
        return upper_value

    @field_validator("workflow_deployment_template")
    @classmethod
    def validate_workflow_deployment_template(cls, value: str) -> str:
        """Template must place the workflow key in the deployment name."""
        if "{workflow_key}" not in value:
            msg = "workflow_deployment_template must contain {workflow_key}"
            raise ValueError(msg)
        return value

    @field_validator("default_concurrency", "max_concurrency")
    @classmethod
    def validate_concurrency(cls, value: int) -> int:
        """Concurrency settings must be positive."""
        if value < 1:
            msg = "concurrency settings must be at least 1"
            raise ValueError(msg)
        return value

    @field_validator("job_poll_interval_seconds")
    @classmethod
    def validate_poll_interval(cls, value: float) -> float:
        """Poll interval must be positive."""
        if value <= 0:
            msg = "job_poll_interval_seconds must be positive"
            raise ValueError(msg)
        return value

    @field_validator("stale_after_minutes")
    @classmethod
    def validate_stale_after_minutes(cls, value: int) -> int:
        """Staleness threshold must be positive."""
        if value < 1:
            msg = "stale_after_minutes must be at least 1"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_concurrency_bounds(self) -> Config:
        """Default concurrency cannot exceed the hard cap."""
        if self.default_concurrency > self.max_concurrency:
            msg = "default_concurrency must not exceed max_concurrency"
            raise ValueError(msg)
        return self
