"""Application configuration using pydantic-settings.

Values are read from LEDGERPAY_* environment variables or a local .env file.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

TESTNET_NETWORKS = ("naga-dev", "naga-test")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERPAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    dry_run: bool = Field(
        default=True, description="Use the in-memory simulated ledger instead of the gateway"
    )

    # ======================
    # Network
    # ======================
    network_name: str = Field(default="naga-dev", description="Ledger network name")

    # ======================
    # Ledger gateway
    # ======================
    ledger_api_url: str = Field(
        default="http://127.0.0.1:8787", description="Base URL of the ledger gateway"
    )
    ledger_api_key: Optional[str] = Field(default=None, description="Gateway API key")
    request_timeout: float = Field(
        default=30.0, description="Timeout in seconds for a single gateway call"
    )
    ledger_webhook_url: Optional[str] = Field(
        default=None, description="Optional URL notified when a ledger balance changes"
    )

    # ======================
    # Polling and feedback timers
    # ======================
    balance_refresh_interval: float = Field(
        default=30.0, description="Auto-refresh cadence for the ledger balance (seconds)"
    )
    settle_delay: float = Field(
        default=2.0, description="Delay before re-reading the ledger after a write (seconds)"
    )
    error_display_seconds: float = Field(
        default=5.0, description="How long an error message stays visible"
    )
    success_display_seconds: float = Field(
        default=3.0, description="How long a success pulse stays visible"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_testnet(self) -> bool:
        """Check if the configured network is a test network."""
        return self.network_name in TESTNET_NETWORKS

    @property
    def ledger_unit(self) -> str:
        """Display unit for ledger amounts on the configured network."""
        return "tstLPX" if self.is_testnet else "LITKEY"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "network_name": self.network_name,
            "ledger_api_url": self.ledger_api_url,
            "ledger_api_key": "***" if self.ledger_api_key else "(not set)",
            "request_timeout": self.request_timeout,
            "ledger_webhook_url": "***" if self.ledger_webhook_url else "(not set)",
            "timers": {
                "balance_refresh_interval": self.balance_refresh_interval,
                "settle_delay": self.settle_delay,
                "error_display_seconds": self.error_display_seconds,
                "success_display_seconds": self.success_display_seconds,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings."""
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
