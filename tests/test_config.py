import pytest
from pydantic import ValidationError

from devhub.config import Environment, Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings()
    assert settings.environment is Environment.DEVELOPMENT
    assert settings.access_token_ttl_minutes == 15
    assert settings.refresh_token_ttl_days == 7
    assert settings.max_login_attempts == 5
    assert settings.lockout_minutes == 30
    assert settings.login_rate_limit_per_minute == 5
    assert settings.refresh_cookie_path == "/v1/auth/refresh"
    assert settings.is_production is False


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "Production")
    monkeypatch.setenv("JWT_SECRET", "env-access-secret-0123456789abcdef")
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("COOKIE_DOMAIN", "  ")
    settings = Settings.from_env()
    assert settings.is_production is True
    assert settings.jwt_secret == "env-access-secret-0123456789abcdef"
    assert settings.access_token_ttl_minutes == 5
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]
    assert settings.cookie_domain is None


def test_blank_redis_url_disables_redis():
    assert Settings(redis_url="").redis_url is None


@pytest.mark.parametrize(
    "field", ["access_token_ttl_minutes", "refresh_token_ttl_days", "max_login_attempts"]
)
def test_non_positive_values_rejected(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_unknown_environment_rejected():
    with pytest.raises(ValidationError):
        Settings(environment="staging")


def test_settings_cache_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("JWT_ISSUER", "other-issuer")
    reset_settings_cache()
    assert get_settings().jwt_issuer == "other-issuer"
    reset_settings_cache()
