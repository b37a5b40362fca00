"""
Central configuration shared by blockrecon services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared across all services."""

    model_config = SettingsConfigDict(
        env_prefix="BR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # service-specific vars (BR_RECON_*) live on their own settings
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    log_level: str = "INFO"
    log_stream: Literal["stderr", "stdout"] = Field(
        default="stderr",
        description="Where log lines are written; stdout is shared with the final report",
    )
    instance_id: str = Field(default="", description="Unique pod/container ID bound to every log line")

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = False
    metrics_port: int = 9090


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
