"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Shared Spending Categorizer", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Classification service (OpenRouter chat completions)
    openrouter_api_key: str = Field(..., alias="OPENROUTER_KEY")
    openrouter_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        alias="OPENROUTER_URL"
    )
    openrouter_model: str = Field(default="deepseek/deepseek-chat", alias="OPENROUTER_MODEL")
    openrouter_timeout: int = Field(default=60, alias="OPENROUTER_TIMEOUT")

    # Storage
    database_path: str = Field(default="categorizer.db", alias="DATABASE_PATH")

    # Worker pool
    num_workers: int = Field(default_factory=lambda: os.cpu_count() or 1, alias="NUM_WORKERS")
    queue_size: int = Field(default=100, alias="QUEUE_SIZE")
    enqueue_timeout_seconds: float = Field(default=2.0, alias="ENQUEUE_TIMEOUT_SECONDS")
    classification_timeout_seconds: float = Field(default=240.0, alias="CLASSIFICATION_TIMEOUT_SECONDS")

    # Validation of classifier output
    max_validation_retries: int = Field(default=3, alias="MAX_VALIDATION_RETRIES")
    amount_tolerance: float = Field(default=3.0, alias="AMOUNT_TOLERANCE")

    # Reconciliation sweep
    reconcile_interval_seconds: float = Field(default=60.0, alias="RECONCILE_INTERVAL_SECONDS")
    stale_pending_after_seconds: float = Field(default=30.0, alias="STALE_PENDING_AFTER_SECONDS")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("num_workers")
    @classmethod
    def validate_num_workers(cls, v):
        """Validate worker count."""
        if v < 1:
            raise ValueError("Number of workers must be at least 1")
        if v > 64:
            raise ValueError("Number of workers should not exceed 64")
        return v

    @field_validator("queue_size", "max_validation_retries")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("amount_tolerance")
    @classmethod
    def validate_tolerance(cls, v):
        if v < 0:
            raise ValueError("Amount tolerance cannot be negative")
        return v

    def ensure_directories(self) -> None:
        """Ensure the database directory exists."""
        Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
