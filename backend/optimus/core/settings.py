"""Application settings and configuration management."""
from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # App basics
    app_name: str = "Optimus Portfolio Analyzer"
    debug: bool = False
    version: str = "1.0.0"
    environment: str = "development"  # development, staging, production

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[Path] = None  # None = console only

    # Data sources
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    price_api_url: str = "https://api.jup.ag/price/v2"
    http_timeout_seconds: float = 10.0

    # Market-data sources: tag -> base URL. Empty = built-in reference feeds.
    market_source_urls: Dict[str, str] = {}
    market_source_timeout_seconds: float = 5.0
    request_deadline_seconds: float = 15.0

    # Rebalancing
    per_trade_fee_sol: Decimal = Decimal("0.0005")
    rebalance_threshold: Decimal = Decimal("0")
    target_tolerance: Decimal = Decimal("0.000001")

    # Advisory rules
    min_native_balance_for_fees: Decimal = Decimal("1")

    # Market signal derivation
    suggestion_step: Decimal = Decimal("0.05")
    bullish_confidence_threshold: float = 0.6

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is a valid value."""
        if v not in ["development", "staging", "production"]:
            raise ValueError("Environment must be one of: development, staging, production")
        return v

    @field_validator("market_source_timeout_seconds", "request_deadline_seconds", "http_timeout_seconds")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Timeouts must be positive."""
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("per_trade_fee_sol", "rebalance_threshold", "target_tolerance", "min_native_balance_for_fees")
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        """Fee and threshold values cannot be negative."""
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v

    model_config = {
        "env_prefix": "OPTIMUS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "case_sensitive": False,
        "str_strip_whitespace": True,
    }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings: The global settings instance
    """
    return settings


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    Returns:
        Settings: Reloaded settings instance
    """
    global settings
    settings = Settings()
    return settings


__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "reload_settings"
]
