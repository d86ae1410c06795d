from __future__ import annotations

from typing import Any, cast

from engagetracker.config.settings import Settings, load_settings, validate_settings


def _valid_settings(**overrides: object) -> Settings:
    defaults = {
        "database_url": "",
        "sqlite_db_path": "data/engagetracker.db",
        "log_level": "INFO",
        "api_base_url": "http://localhost:8000",
        "engagement_weights_path": "config/engagement_weights.yaml",
        "top_engagers_default_limit": 10,
        "cors_origins": "",
        "dashboard_refresh_seconds": 5,
    }
    defaults.update(overrides)
    return Settings(**cast(dict[str, Any], defaults))


def test_valid_settings_have_no_errors():
    assert validate_settings(_valid_settings()) == []


def test_validate_settings_rejects_unknown_log_level():
    errors = validate_settings(_valid_settings(log_level="LOUD"))
    assert any("LOG_LEVEL" in e for e in errors)


def test_validate_settings_requires_scheme_on_api_base_url():
    errors = validate_settings(_valid_settings(api_base_url="localhost:8000"))
    assert "API_BASE_URL must include scheme, e.g. http://" in errors


def test_validate_settings_rejects_non_positive_limits():
    errors = validate_settings(
        _valid_settings(top_engagers_default_limit=0, dashboard_refresh_seconds=-1)
    )
    assert "TOP_ENGAGERS_DEFAULT_LIMIT must be > 0" in errors
    assert "DASHBOARD_REFRESH_SECONDS must be > 0" in errors


def test_validate_settings_rejects_whitespace_weights_path():
    errors = validate_settings(_valid_settings(engagement_weights_path="   "))
    assert any("ENGAGEMENT_WEIGHTS_PATH" in e for e in errors)


def test_validate_settings_rejects_non_postgres_database_url():
    errors = validate_settings(_valid_settings(database_url="mysql://db/engage"))
    assert any("DATABASE_URL" in e for e in errors)


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("TOP_ENGAGERS_DEFAULT_LIMIT", "3")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings = load_settings()
    assert settings.log_level == "DEBUG"
    assert settings.top_engagers_default_limit == 3
    assert settings.cors_origins_list == ["http://a.test", "http://b.test"]
    assert settings.database_url == ""
