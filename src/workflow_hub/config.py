"""Configuration for workflow-hub.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nested sections use their own prefixes (``WORKFLOW_HUB_STORE_*``,
``WORKFLOW_HUB_UPLOAD_*``) so they can be overridden independently.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseSettings):
    """Configuration for the JSON document store."""

    data_path: Path = Field(
        default=Path("workflow_state"),
        description="Directory holding one JSON file per collection",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_HUB_STORE_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def workflows_file(self) -> Path:
        return self.data_path / "workflows.json"

    @property
    def executions_file(self) -> Path:
        return self.data_path / "executions.json"

    @property
    def contacts_file(self) -> Path:
        return self.data_path / "contacts.json"

    @property
    def portals_file(self) -> Path:
        return self.data_path / "portals.json"

    @property
    def users_file(self) -> Path:
        return self.data_path / "users.json"


class UploadConfig(BaseSettings):
    """Configuration for step file uploads."""

    bucket: str = Field(
        default="",
        description="Bucket receiving step uploads; required for upload URLs",
    )
    region: str | None = Field(
        default=None,
        description="Region of the upload bucket (None = boto3 default resolution)",
    )
    default_expires_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Upload URL lifetime when the caller does not pass one",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_HUB_UPLOAD_",
        env_file=".env",
        extra="ignore",
    )


class ServiceSettings(BaseSettings):
    """Main configuration for workflow-hub."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    metrics_update_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description=(
            "Compare-and-swap attempts for denormalized workflow metrics before the "
            "update is given up and logged."
        ),
    )
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        description="Comma-separated list of allowed CORS origins.",
    )

    store: StoreConfig = Field(
        default_factory=StoreConfig,
        description="Document store configuration",
    )
    upload: UploadConfig = Field(
        default_factory=UploadConfig,
        description="Upload configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_HUB_",
        env_file=".env",
        extra="ignore",
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def logging_level(self) -> int:
        if self.debug:
            return logging.DEBUG
        return getattr(logging, self.log_level.upper(), logging.INFO)
