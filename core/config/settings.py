# Complete settings for the trade router
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Literal
from pathlib import Path


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class RedisSettings(BaseModel):
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "trade_router"


class RateLimitSettings(BaseModel):
    """Per-key admission window and 429 backoff tuning"""
    window_seconds: float = 60.0
    max_requests: int = 100
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter_max_seconds: float = 1.0
    sweep_interval_seconds: float = 300.0  # 5 minutes
    max_retries: int = 3

    @field_validator("window_seconds", "base_delay_seconds", "max_delay_seconds")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class RoutingSettings(BaseModel):
    """Brokerage scoring weights"""
    placeholder_market_price: float = 100.0  # Used when no limit price is given
    base_fee: float = 0.99
    fee_rate: float = 0.005  # 0.5% of trade value
    fee_score_ceiling: float = 100.0
    balance_score_cap: float = 50.0
    balance_score_divisor: float = 1000.0
    specialization_bonus: float = 25.0
    instant_execution_bonus: float = 20.0
    fast_execution_bonus: float = 10.0


class RepairSettings(BaseModel):
    base_url: str = "http://localhost:5000"


class PaperTradingSettings(BaseModel):
    # 0 settles inside submit(); a positive value settles from a background task
    fill_delay_seconds: float = 0.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = True

    # Console logging
    console_enabled: bool = True

    # File logging, one rotating file per channel
    file_enabled: bool = False
    logs_dir: str = "logs"
    file_max_bytes: int = 50 * 1024 * 1024
    file_backup_count: int = 5

    # Channel-specific levels
    trading_level: str = "INFO"
    resilience_level: str = "INFO"

    # Redaction
    redact_keys: list[str] = [
        "authorization", "access_token", "refresh_token", "api_key",
        "api_secret", "password", "secret", "token", "consumer_key",
    ]


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Trade Router"
    version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT

    # Where RateLimitState and ConnectionHealth live
    state_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Keyed state backend; use redis when running several instances",
    )

    redis: RedisSettings = RedisSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    routing: RoutingSettings = RoutingSettings()
    repair: RepairSettings = RepairSettings()
    paper_trading: PaperTradingSettings = PaperTradingSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def logs_dir(self) -> str:
        return self.logging.logs_dir

    @property
    def base_dir(self) -> str:
        """Get base application directory dynamically"""
        # Go up 2 levels from core/config/settings.py to reach project root
        return str(Path(__file__).resolve().parents[2])


# No global settings instance - use dependency injection instead
