"""settlement.config
=================
Mini-README: Centralises configuration management using Pydantic settings. The module
defines strongly typed settings for the server, the settlement gateway, and the
payout/chargeback risk thresholds. All monetary values are integer minor units.
Usage: import `get_settings()` to retrieve a cached configuration instance.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration container leveraging environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="SETTLEMENT_")

    app_name: str = Field(default="Creator Settlement Core")
    environment: str = Field(default="development")
    secret_key: str = Field(default="change-me-secret-key")
    webhook_token: str = Field(default="change-me-webhook-token")
    database_url: str = Field(default="sqlite+aiosqlite:///./settlement.db")
    database_echo: bool = Field(default=False)
    default_host: str = Field(default="127.0.0.1")
    default_port: int = Field(default=8000)

    # Settlement gateway (PIX transfers)
    gateway_api_key: str = Field(default="")
    gateway_sandbox: bool = Field(default=True)
    gateway_base_url: str | None = Field(default=None)
    gateway_timeout_seconds: float = Field(default=15.0)

    # Payout rules
    min_payout_amount: int = Field(default=2000)
    payout_fee: int = Field(default=500)
    min_net_payout: int = Field(default=100)
    payout_velocity_window_minutes: int = Field(default=60)
    payout_velocity_limit: int = Field(default=3)
    monthly_payout_window_days: int = Field(default=30)
    monthly_payout_limit_standard: int = Field(default=4)
    monthly_payout_limit_pro: int = Field(default=8)

    # Risk signals
    chargeback_block_threshold: int = Field(default=3)
    chargeback_flag_severity: int = Field(default=4)
    velocity_flag_severity: int = Field(default=3)
    shared_device_flag_severity: int = Field(default=3)
    duplicate_identity_flag_severity: int = Field(default=4)

    @property
    def resolved_gateway_base_url(self) -> str:
        """Return the configured gateway URL, defaulting to sandbox or production."""

        if self.gateway_base_url:
            return self.gateway_base_url.rstrip("/")
        if self.gateway_sandbox:
            return "https://sandbox.asaas.com/api/v3"
        return "https://www.asaas.com/api/v3"


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of application settings."""

    return Settings()
