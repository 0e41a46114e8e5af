"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 5.0
    session_secret: str
    openai_api_key: str
    openai_transcription_model: str = "whisper-1"
    openai_summary_model: str = "gpt-4.1-mini"
    sendgrid_api_key: str | None = None
    email_from: str = "noreply@standup-sync.app"
    session_ttl_seconds: int = 14400
    max_participants: int = 20
    create_limit_per_hour: int = 5
    join_limit_per_hour: int = 10
    code_ttl_seconds: int = 300
    max_codes_per_hour: int = 10
    max_verify_attempts: int = 5
    verify_window_seconds: int = 900
    token_ttl_days: int = 30
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
