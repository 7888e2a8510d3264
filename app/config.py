"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "postgresql://localhost/candles"

    # Bithumb API
    api_base_url: str = "https://api.bithumb.com/v1"
    api_timeout: float = 10.0
    api_utc_offset_hours: int = 9  # "to" parameter is exchange-local time (KST)
    api_calls_per_second: int = 10

    # Collection
    batch_size: int = 200  # API maximum per request
    batch_delay: float = 0.1  # Seconds between successful batches
    error_backoff: float = 1.0  # Seconds to wait after a failed batch
    max_consecutive_errors: int = 10
    lookback_years: int = 2
    dedup_tolerance_seconds: int = 60

    # Backtest
    backtest_min_candles: int = 100
    backtest_initial_amount: float = 10_000_000.0

    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
