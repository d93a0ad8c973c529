"""Application settings for the Solana explorer block service."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_BLOCK_LIMIT = 50
_COMMITMENTS = ("processed", "confirmed", "finalized")


class Settings(BaseSettings):
    """Strongly typed runtime configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    rpc_endpoint: str = Field(
        default="https://api.mainnet-beta.solana.com",
        validation_alias=AliasChoices(
            "rpc_endpoint", "explorer_rpc_endpoint", "next_public_solana_rpc_endpoint"
        ),
        description="Solana JSON-RPC endpoint used for block polling.",
    )
    rpc_commitment: str = Field(default="confirmed", description="Commitment level for getSlot/getBlock.")
    rpc_timeout_sec: float = Field(default=10.0, description="Timeout for a single JSON-RPC call.")

    stream_poll_ms: int = Field(
        default=400,
        validation_alias=AliasChoices(
            "stream_poll_ms", "explorer_stream_poll_ms", "recent_blocks_stream_poll_ms"
        ),
        description="Interval between recent-block polls while clients are connected.",
    )
    stream_limit: int = Field(
        default=10,
        validation_alias=AliasChoices(
            "stream_limit", "explorer_stream_limit", "recent_blocks_stream_limit"
        ),
        description="Number of blocks fetched per poll.",
    )
    stream_keepalive_ms: int = Field(default=15_000, description="Interval of the empty keep-alive broadcast.")
    sse_ping_ms: int = Field(default=15_000, description="Interval of SSE comment pings on idle connections.")
    sse_queue_size: int = Field(default=16, description="Per-connection frame backlog before dropping the oldest.")

    enable_geyser_recent_blocks: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "enable_geyser_recent_blocks",
            "explorer_enable_geyser_recent_blocks",
        ),
        description="Try the low-latency Geyser provider before RPC polling.",
    )
    geyser_grpc_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("geyser_grpc_url", "explorer_geyser_grpc_url"),
    )
    geyser_grpc_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("geyser_grpc_token", "explorer_geyser_grpc_token"),
    )

    recent_blocks_cache_ttl_ms: int = Field(
        default=800,
        validation_alias=AliasChoices(
            "recent_blocks_cache_ttl_ms", "explorer_recent_blocks_cache_ttl_ms"
        ),
        description="TTL of the one-shot /api/recent-blocks cache.",
    )

    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics endpoint.")
    log_level: str = Field(default="INFO", description="Application log level.")

    @field_validator("rpc_commitment")
    @classmethod
    def _validate_commitment(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in _COMMITMENTS:
            raise ValueError(f"rpc_commitment must be one of {', '.join(_COMMITMENTS)}")
        return value

    @field_validator("stream_poll_ms", "stream_keepalive_ms", "sse_ping_ms", "sse_queue_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("interval and queue settings must be positive")
        return value

    @field_validator("stream_limit")
    @classmethod
    def _clamp_limit(cls, value: int) -> int:
        return max(1, min(value, MAX_BLOCK_LIMIT))

    @field_validator("geyser_grpc_url", "geyser_grpc_token", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid repeated environment parsing."""

    return Settings()
