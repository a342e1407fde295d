"""
Configuration module for the Patient Journey Engine.

Uses Pydantic Settings for environment variable support and validation.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional, Literal
from pathlib import Path


class Settings(BaseSettings):
    """
    Application configuration with environment variable support.

    All settings can be overridden via environment variables or .env file.
    """

    environment: str = Field(
        default="development",
        description="Deployment environment reported by the health check"
    )

    # Persistence
    store_backend: Literal["file", "memory"] = Field(
        default="file",
        description="Where journeys and runs are persisted"
    )
    data_dir: str = Field(
        default="data",
        description="Root directory for the file store (journeys/ and runs/ below it)"
    )
    store_connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts to reach the store at startup before giving up"
    )
    store_connect_wait_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Wait between store connection attempts"
    )

    # Execution
    max_steps_per_run: Optional[int] = Field(
        default=None,
        ge=1,
        description="Fail a run after this many node executions (unset = unbounded)"
    )

    # HTTP server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)

    # CLI client
    api_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the journey API used by client commands"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for client HTTP requests"
    )

    # Logging settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file path"
    )
    json_logs: bool = Field(
        default=False,
        description="Output logs as JSON (for production)"
    )

    model_config = {
        "env_file": [
            ".env",
            Path(__file__).parent / ".env",
        ],
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    @field_validator("api_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API base URL."""
        return v.rstrip("/") if isinstance(v, str) else v

    @field_validator("max_steps_per_run", mode="before")
    @classmethod
    def empty_means_unbounded(cls, v):
        """Treat an empty environment value as unset."""
        if v == "":
            return None
        return v
