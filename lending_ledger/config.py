"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

from .currency import Currency


class LedgerConfig(BaseSettings):
    """Interest ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage configuration
    database_url: str = "sqlite:///lending_ledger.db"  # or memory://

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_currency: str = "INR"
    accrual_day_of_month: int = Field(default=1, ge=1, le=28)

    # Scheduler configuration
    scheduler_interval_seconds: int = Field(default=24 * 60 * 60, gt=0)
    scheduler_run_on_start: bool = True

    # Monthly summary delivery
    enable_monthly_summaries: bool = True
    summary_webhook_url: str = ""  # Empty = log channel only
    summary_webhook_timeout: float = 10.0

    # Feature flags
    enable_audit_logging: bool = True

    @field_validator("default_currency")
    @classmethod
    def _known_currency(cls, value: str) -> str:
        code = value.upper()
        if code not in Currency.__members__:
            raise ValueError(f"Unsupported currency: {value}")
        return code

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return value


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
