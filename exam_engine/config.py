# FILE: exam_engine/config.py
"""
Configuration management for the exam engine
Loads from environment variables with validation
"""
import os
from typing import List, Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    # Backend server
    backend_host: str = Field(default="0.0.0.0", alias="BACKEND_HOST")
    backend_port: int = Field(default=8000, alias="BACKEND_PORT")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Relational store
    database_url: str = Field(default="sqlite:///./data/exam_engine.db", alias="DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Key/value store (timers + rank cache). Empty means in-process store.
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    redis_timeout_seconds: float = Field(default=2.0, alias="REDIS_TIMEOUT_SECONDS")

    # Exam timers
    timer_grace_seconds: int = Field(
        default=60,
        alias="TIMER_GRACE_SECONDS",
        description="Extra TTL on timer records so the sweep still sees them after the deadline"
    )
    sweep_enabled: bool = Field(default=True, alias="SWEEP_ENABLED")
    sweep_interval_seconds: float = Field(default=10.0, alias="SWEEP_INTERVAL_SECONDS")

    # Rank cache
    rank_cache_ttl_seconds: int = Field(default=3600, alias="RANK_CACHE_TTL_SECONDS")

    # AI grading
    ai_grading_enabled: bool = Field(default=True, alias="AI_GRADING_ENABLED")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    ai_grading_model: str = Field(default="gpt-4.1-mini", alias="AI_GRADING_MODEL")
    ai_grading_temperature: float = Field(default=0.2, alias="AI_GRADING_TEMPERATURE")
    ai_grading_timeout_seconds: float = Field(default=15.0, alias="AI_GRADING_TIMEOUT_SECONDS")

    # Admin notification
    admin_webhook_url: Optional[str] = Field(default=None, alias="ADMIN_WEBHOOK_URL")
    admin_notify_timeout_seconds: float = Field(default=5.0, alias="ADMIN_NOTIFY_TIMEOUT_SECONDS")

    # Data paths
    data_dir: str = Field(default="./data", alias="DATA_DIR")
    logs_dir: str = Field(default="./logs", alias="LOGS_DIR")

    # Telemetry
    telemetry_enabled: bool = Field(default=True, alias="TELEMETRY_ENABLED")

    # CORS
    cors_origins: List[str] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    # Validators
    @validator("environment")
    def validate_environment(cls, v):
        if v not in ["development", "test", "production"]:
            raise ValueError("environment must be 'development', 'test', or 'production'")
        return v

    @validator("sweep_interval_seconds")
    def validate_sweep_interval(cls, v):
        if v <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        return v

    @validator("timer_grace_seconds")
    def validate_timer_grace(cls, v):
        if v < 0:
            raise ValueError("timer_grace_seconds must not be negative")
        return v

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        for dir_path in [self.data_dir, self.logs_dir]:
            os.makedirs(dir_path, exist_ok=True)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings (useful for testing)"""
    global _settings
    _settings = None
    return get_settings()
