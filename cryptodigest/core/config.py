"""Core configuration management using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Literal
import pytz


# Valid log levels
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Redis (redis_url should contain full connection string including port)
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "crypto_bot:"

    # Telegram
    telegram_bot_token: str
    admin_chat_ids: str = ""  # Comma-separated chat ids allowed to edit the symbol catalog

    # Market data
    binance_base_url: str = "https://api.binance.com/api/v3"
    quote_asset: str = "USDT"
    http_timeout_seconds: float = 10.0

    # Broadcast cadence
    refresh_interval_seconds: int = 60
    cycle_timeout_seconds: float = 45.0
    max_concurrent_cycles: int = 10
    # Cross-process per-subscriber lock; expires if its holder dies mid-cycle
    cycle_lock_seconds: float = 120.0
    replace_policy: Literal["always", "stale_only"] = "always"
    embed_scheduler: bool = True

    # Symbols seeded into the allowed set on first start
    default_symbols: str = "BTC,ETH,BNB,XRP,ADA,DOGE,SOL"

    # Calendar day used by the staleness check
    timezone: str = "UTC"

    # Logging
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")
        return upper_v

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone is known to pytz."""
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator(
        'refresh_interval_seconds', 'cycle_timeout_seconds', 'max_concurrent_cycles', 'cycle_lock_seconds'
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def default_symbols_list(self) -> List[str]:
        """Parse default symbols from comma-separated string to list."""
        return [s.strip().upper() for s in self.default_symbols.split(",") if s.strip()]

    @property
    def admin_chat_ids_list(self) -> List[int]:
        """Parse admin chat ids from comma-separated string to list."""
        return [int(c.strip()) for c in self.admin_chat_ids.split(",") if c.strip()]


# Global settings instance
settings = Settings()
