from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: str
    sqlite_db_path: str
    log_level: str
    api_base_url: str
    engagement_weights_path: str
    top_engagers_default_limit: int
    cors_origins: str
    dashboard_refresh_seconds: int

    @property
    def cors_origins_list(self) -> list[str]:
        return [part.strip() for part in self.cors_origins.split(",") if part.strip()]


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "").strip(),
        sqlite_db_path=os.getenv("SQLITE_DB_PATH", "data/engagetracker.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_base_url=os.getenv("API_BASE_URL", "http://localhost:8000"),
        engagement_weights_path=os.getenv(
            "ENGAGEMENT_WEIGHTS_PATH", "config/engagement_weights.yaml"
        ),
        top_engagers_default_limit=_get_int_env("TOP_ENGAGERS_DEFAULT_LIMIT", 10),
        cors_origins=os.getenv("CORS_ORIGINS", ""),
        dashboard_refresh_seconds=_get_int_env("DASHBOARD_REFRESH_SECONDS", 5),
    )


def validate_settings(settings: Settings) -> list[str]:
    errors: list[str] = []
    if settings.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        errors.append("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
    if not settings.api_base_url:
        errors.append("API_BASE_URL is required")
    if "://" not in settings.api_base_url:
        errors.append("API_BASE_URL must include scheme, e.g. http://")
    if settings.top_engagers_default_limit <= 0:
        errors.append("TOP_ENGAGERS_DEFAULT_LIMIT must be > 0")
    if settings.dashboard_refresh_seconds <= 0:
        errors.append("DASHBOARD_REFRESH_SECONDS must be > 0")
    if not settings.engagement_weights_path.strip():
        errors.append("ENGAGEMENT_WEIGHTS_PATH must not be empty")
    if settings.database_url and not settings.database_url.startswith(
        ("postgres://", "postgresql://")
    ):
        errors.append("DATABASE_URL must start with postgres:// or postgresql://")
    return errors


def ensure_runtime_dirs(settings: Settings) -> None:
    if not settings.database_url:
        Path(settings.sqlite_db_path).parent.mkdir(parents=True, exist_ok=True)
