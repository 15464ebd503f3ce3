"""Configuration utilities for the Health Insights service."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env_flag(name: str, default: bool) -> bool:
    """Return a boolean flag derived from environment variables."""

    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str = "") -> Tuple[str, ...]:
    """Return a tuple of non-empty, comma-separated values."""

    return tuple(
        item.strip() for item in os.getenv(name, default).split(",") if item.strip()
    )


BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

MEGABYTE = 1024 * 1024


def _load_environment() -> None:
    """Load environment variables from a ``.env`` file if present."""

    explicit_path = os.getenv("HEALTH_INSIGHTS_ENV_FILE")
    candidates = []

    if explicit_path:
        candidates.append(Path(explicit_path))

    candidates.append(PROJECT_ROOT / ".env")

    for candidate in candidates:
        try_path = candidate.expanduser()
        if try_path.exists():
            load_dotenv(try_path, override=False)


_load_environment()


def _database_url_default() -> str:
    """Return the configured database URL using legacy fallbacks."""

    return (
        os.getenv("DATABASE_URL")
        or os.getenv("DB_URL")
        or "sqlite:///./health_insights.db"
    )


def _is_serverless() -> bool:
    """Return whether the process runs on an ephemeral filesystem."""

    if _env_flag("SERVERLESS", False):
        return True
    return bool(os.getenv("VERCEL") or os.getenv("AWS_LAMBDA_FUNCTION_NAME"))


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    environment: str = Field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "production").lower()
    )
    serverless: bool = Field(default_factory=_is_serverless)
    database_url: str = Field(default_factory=_database_url_default)
    chat_fallback_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CHAT_FALLBACK_DIR", str(PROJECT_ROOT / ".chats"))
        )
    )
    app_config_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("APP_CONFIG_PATH", str(PROJECT_ROOT / "config.json"))
        )
    )
    cors_allow_origins: Tuple[str, ...] = Field(
        default_factory=lambda: _env_list("CORS_ALLOW_ORIGINS")
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))
    user_id_header: str = Field(
        default_factory=lambda: os.getenv("USER_ID_HEADER", "X-User-Id")
    )
    admin_user_ids: Tuple[str, ...] = Field(
        default_factory=lambda: _env_list("ADMIN_USER_IDS")
    )
    gemini_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        )
    )
    gemini_primary_model: str = Field(
        default_factory=lambda: os.getenv(
            "GEMINI_PRIMARY_MODEL", "gemini-2.0-pro-exp-02-05"
        )
    )
    gemini_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("GEMINI_TIMEOUT_S", "90"))
    )
    max_upload_size_general: int = Field(
        default_factory=lambda: int(
            os.getenv("MAX_UPLOAD_SIZE_GENERAL", str(10 * MEGABYTE))
        )
    )
    max_upload_size_labs: int = Field(
        default_factory=lambda: int(os.getenv("MAX_UPLOAD_SIZE_LABS", str(20 * MEGABYTE)))
    )
    async_threshold_bytes: int = Field(
        default_factory=lambda: int(os.getenv("ASYNC_THRESHOLD_BYTES", str(5 * MEGABYTE)))
    )
    sync_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("SYNC_TIMEOUT_S", "60"))
    )
    min_extracted_chars: int = Field(
        default_factory=lambda: int(os.getenv("MIN_EXTRACTED_CHARS", "50"))
    )
    job_store_backend: str = Field(
        default_factory=lambda: os.getenv("JOB_STORE_BACKEND", "memory").lower()
    )
    job_ttl_s: int = Field(
        default_factory=lambda: int(os.getenv("JOB_TTL_S", str(24 * 60 * 60)))
    )
    worker_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("WORKER_CONCURRENCY", "2"))
    )
    redis_url: str | None = Field(default_factory=lambda: os.getenv("REDIS_URL"))
    rate_limit_backend: str = Field(
        default_factory=lambda: os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
    )
    rate_limit_requests: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_REQUESTS", "15"))
    )
    rate_limit_window_s: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_WINDOW_S", "60"))
    )

    @field_validator("chat_fallback_dir", mode="before")
    @classmethod
    def _ensure_chat_dir(cls, value: Path | str) -> Path:
        path = Path(value)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("job_store_backend", "rate_limit_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        if value not in {"memory", "redis"}:
            raise ValueError(f"Unsupported backend: {value}")
        return value

    @property
    def is_development(self) -> bool:
        return self.environment in {"development", "dev", "local"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (useful for tests)."""

    get_settings.cache_clear()


__all__ = [
    "MEGABYTE",
    "PROJECT_ROOT",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
