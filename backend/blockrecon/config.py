"""
Reconciler service configuration.
Uses BR_RECON_ prefix; command-line flags override values read from the environment.
"""
from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from blockrecon.sources.base import Commitment


class ReconcilerSettings(BaseSettings):
    """Endpoints, observation window and retry/concurrency limits for one run."""

    model_config = SettingsConfigDict(
        env_prefix="BR_RECON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sources
    endpoint: str = Field(description="Streaming source websocket URL (ws:// or wss://)")
    x_token: str = Field(description="Auth token sent as the x-token header")
    rpc_uri: str = Field(description="Reference JSON-RPC URL (http:// or https://)")
    commitment: Commitment = Field(default=Commitment.FINALIZED, description="Commitment level for both sources")

    # Observation window (seconds)
    duration_s: float = Field(default=60.0, ge=0, description="How long to stream and compare")

    # Reconnect backoff
    backoff_initial_interval_s: float = Field(default=0.5, gt=0, description="First retry delay")
    backoff_multiplier: float = Field(default=1.5, ge=1.0, description="Growth factor per consecutive failure")
    backoff_max_interval_s: float = Field(default=60.0, gt=0, description="Upper bound for a single retry delay")
    backoff_max_elapsed_s: Optional[float] = Field(
        default=900.0, gt=0, description="Give up after failing this long without reaching streaming; None = never"
    )

    # Timeouts
    connect_timeout_s: float = Field(default=10.0, gt=0, description="Websocket opening handshake timeout")
    ws_ping_interval_s: Optional[float] = Field(default=20.0, description="Transport-level keepalive; None disables")
    rpc_timeout_s: float = Field(default=30.0, gt=0, description="HTTP timeout per reference request")

    # Limits
    max_concurrent_comparisons: int = Field(default=16, ge=1, description="Reference queries in flight at once")
    max_malformed_updates: int = Field(default=3, ge=1, description="Consecutive undecodable updates before reconnect")

    @field_validator("endpoint")
    @classmethod
    def _websocket_scheme(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError("endpoint must be a ws:// or wss:// URL")
        return value

    @field_validator("rpc_uri")
    @classmethod
    def _http_scheme(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("rpc_uri must be an http:// or https:// URL")
        return value
