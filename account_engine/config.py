import os

from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the legacy RPC_URL environment variable alias."""

        super().model_post_init(__context)

        if not self.relay_rpc_url:
            fallback = os.getenv("RPC_SERVER_URL") or os.getenv("RPC_URL")
            if fallback:
                object.__setattr__(self, "relay_rpc_url", fallback)

    log_level: str = Field(default="INFO", description="Logging level")

    # Relay
    relay_rpc_url: str = Field(
        default="",
        description="JSON-RPC endpoint of the relay/orchestrator service",
        validation_alias=AliasChoices("relay_rpc_url", "RELAY_RPC_URL"),
    )
    chain_id: int = Field(default=84532, description="Chain the engine operates on")
    request_timeout_seconds: int = Field(default=30, description="Relay request timeout")

    # Fee tokens
    default_fee_token: Optional[str] = Field(
        default=None,
        description="Preferred fee token symbol when the caller does not pick one",
    )
    fee_token_cache_ttl_seconds: int = Field(
        default=60,
        ge=1,
        description="How long relay fee token capabilities are reused per chain",
    )

    # Bundle confirmation
    calls_status_polling_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Interval between wallet_getCallsStatus polls",
    )
    calls_status_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Max seconds to wait for a call bundle to reach a final status",
    )

    # Keys & pre-calls
    keystore_host: Optional[str] = Field(
        default=None,
        description="WebAuthn relying party id; unset means the current host",
    )
    mock_mode: bool = Field(
        default=False,
        description="Substitute headless WebAuthn keys. Testing purposes only.",
    )
    persist_pre_calls: bool = Field(
        default=True,
        description="Store signed pre-calls in the configured storage",
    )
    redis_url: str = Field(
        default="",
        description="Redis connection string used to persist pre-calls",
    )

    # Sign-In With Ethereum
    siwe_domain: str = Field(default="localhost", description="SIWE domain")
    siwe_uri: str = Field(default="http://localhost", description="SIWE URI")

    @property
    def has_relay(self) -> bool:
        return bool(self.relay_rpc_url)

    @property
    def has_redis(self) -> bool:
        return bool(self.redis_url)


# Global settings instance
settings = Settings()
