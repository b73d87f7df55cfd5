"""Configuration for FastAPI application."""

import json
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    # API Configuration
    api_prefix: str = "/api/v1"
    api_title: str = "crm-backup API"
    api_version: str = "1.0.0"
    allowed_origins: Union[str, List[str]] = ["*"]

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse allowed_origins from string or list."""
        if isinstance(v, str):
            # If it's a JSON array string, parse it
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v]
            # Single origin string
            return [v]
        return v

    # Job tracking and restore lock; in-process when unset
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None

    # Live dataset
    dataset_backend: str = "memory"
    dataset_namespace: str = "crm"

    backup_dir: str = "./backups"
    scheduler_enabled: bool = True
    history_limit: int = Field(default=50, ge=1, description="Entries returned by /backup/history")
    stream_poll_interval: float = Field(default=1.0, gt=0, description="Seconds between SSE job updates")


settings = Settings()
