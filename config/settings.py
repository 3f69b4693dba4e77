"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SHESHIELD_`` prefix; provider / infrastructure settings
use their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the SheShield escalation service.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``SHESHIELD_``; Twilio, Supabase
    and infra keys use their standard names (configured via
    ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SHESHIELD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Telephony (Twilio) ─────────────────────────────────────────────
    telephony_provider: Literal["twilio", "mock"] = "twilio"
    twilio_account_sid: str = Field(default="", validation_alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", validation_alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str = Field(default="", validation_alias="TWILIO_PHONE_NUMBER")
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"
    telephony_timeout_seconds: float = 15.0
    mock_call_status: str = "completed"

    # ── Supabase (relational store) ────────────────────────────────────
    supabase_url: str = Field(default="", validation_alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", validation_alias="SUPABASE_SERVICE_ROLE_KEY")
    store_timeout_seconds: float = 10.0

    # ── Redis (chain checkpoints) ──────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── Escalation ─────────────────────────────────────────────────────
    settling_window_seconds: float = Field(default=30.0, ge=0)
    default_max_retry_attempts: int = Field(default=3, ge=1)  # used when a user has no retry_settings row
    default_retry_interval_minutes: float = Field(default=2.0, ge=0)
    resume_pending_on_startup: bool = True

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url)


# Module-level singleton: import ``settings`` everywhere.
settings = Settings()
