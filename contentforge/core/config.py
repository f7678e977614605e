"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from Railway environment variables in production.
Every collaborator is built from one Settings instance at startup (see
services/container.py), so tests can pass their own Settings instead of
patching the environment.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore Railway's auto-injected vars we don't need
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # ── Storage ─────────────────────────────────────────────
    store_backend: Literal["sql", "memory"] = "sql"
    database_url: str = "sqlite+aiosqlite:///./contentforge.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Railway injects postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""
    model_generator: str = "gemini-2.5-flash"
    generation_temperature: float = 0.2
    generation_timeout_seconds: float = 45.0
    generation_max_attempts: int = Field(default=3, ge=1)
    generation_backoff_base: float = Field(
        default=2.0, description="Seconds before the first retry; doubles each attempt"
    )
    generation_retry_jitter: bool = True

    # ── Source retrieval ────────────────────────────────────
    transcript_timeout_seconds: float = 30.0
    metadata_timeout_seconds: float = 10.0
    transcript_languages: list[str] = ["en"]
    transcript_max_chars: int = 12_000

    # ── Email (SMTP) ────────────────────────────────────────
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_sender: str = "ContentForge <noreply@contentforge.local>"

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host)

    # ── Security ────────────────────────────────────────────
    api_key: str = "change-me"
    create_rate_limit: str = "10/minute"

    # ── Lifecycle tunables ──────────────────────────────────
    approval_ttl_hours: int = 24
    auto_request_approval: bool = True
    expiry_sweep_enabled: bool = True
    expiry_sweep_interval_seconds: float = 600.0
    default_publish_handle: str = "contentforge"


@lru_cache
def get_settings() -> Settings:
    return Settings()
