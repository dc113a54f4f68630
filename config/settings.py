from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Core
    ENVIRONMENT: str = Field(default="production")
    LOG_LEVEL: str = Field(default="INFO")
    FIRESTORE_PROJECT_ID: str = Field(default="")
    CORS_ALLOW_ORIGINS: str = Field(default="*")  # comma-separated

    # Gemini backend
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_MODEL: str = Field(default="gemini-1.5-flash")
    GEMINI_API_BASE: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    GEMINI_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)

    # Quota accounting (Gemini Flash free tier)
    QUOTA_STORE: str = Field(default="file")  # file | firestore | memory
    QUOTA_STATE_PATH: str = Field(default="")  # empty -> logs/quota.json, /tmp on serverless
    QUOTA_MINUTE_LIMIT: int = Field(default=15, gt=0)
    QUOTA_DAILY_LIMIT: int = Field(default=120, gt=0)

    # Outbound request governor
    GOVERNOR_MIN_INTERVAL_SECONDS: float = Field(default=30.0, ge=0)
    GOVERNOR_MAX_RETRIES: int = Field(default=3, ge=0)
    GOVERNOR_DEFAULT_RETRY_DELAY_SECONDS: float = Field(default=30.0, gt=0)
    GOVERNOR_DISPATCH_PAUSE_SECONDS: float = Field(default=0.1, ge=0)

    # Quiz workflow
    DEFAULT_QUESTION_COUNT: int = Field(default=5, gt=0)
    PROMPT_CONTENT_MAX_CHARS: int = Field(default=5000, gt=0)
    UPLOAD_MAX_BYTES: int = Field(default=10 * 1024 * 1024, gt=0)
    SESSIONS_LIST_LIMIT: int = Field(default=20, gt=0)
    OCR_LANGUAGE: str = Field(default="spa")


settings = Settings()
