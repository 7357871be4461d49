"""Application configuration via pydantic-settings."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Polymarket Gamma API base URL (market metadata)
    gamma_api_url: str = "https://gamma-api.polymarket.com"

    # CLOB API base URL (order books, prices)
    clob_api_url: str = "https://clob.polymarket.com"

    # Optional API key; public reads work without one
    polymarket_api_key: str = ""

    # HTTP request timeout seconds
    http_timeout: float = 30.0

    # Outbound quota per rolling 60s window, per upstream
    rate_limit_per_minute: int = 100

    # Minimum spacing between dispatches (seconds)
    rate_limit_min_delay: float = 0.1

    # Response cache freshness window (seconds) and size bound
    cache_ttl: float = 300.0
    cache_max_entries: int = 256

    # Liquidity floor for a record to pass validation
    min_valid_liquidity: float = 100.0

    # Stricter floors applied to the active-markets listing
    min_liquidity: float = 1000.0
    min_volume_24hr: float = 500.0

    # Markets requested per source per scan
    scan_limit: int = 100

    # Minutes between scan cycles in watch mode
    scan_interval_minutes: float = 5.0

    # Reference stake used to size opportunities
    nominal_capital: float = 1000.0

    # Confidence attached to every opportunity (no scoring model yet)
    default_confidence: float = 0.8

    log_level: str = "INFO"

    @field_validator("rate_limit_per_minute", "scan_limit", "cache_max_entries")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be > 0, got {v}")
        return v

    @field_validator("http_timeout", "cache_ttl", "scan_interval_minutes", "nominal_capital")
    @classmethod
    def _positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be > 0, got {v}")
        return v

    @field_validator("rate_limit_min_delay", "min_valid_liquidity", "min_liquidity", "min_volume_24hr")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v

    @field_validator("default_confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"default_confidence must be in [0, 1], got {v}")
        return v


def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
