import pytest
from pydantic import ValidationError

from talenthub.config import Settings, get_settings, reset_settings_cache


def test_signing_secrets_must_differ():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="s" * 48, jwt_refresh_secret="s" * 48)


def test_token_lifetimes_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="a" * 48, jwt_refresh_secret="b" * 48, access_token_ttl_seconds=0)


def test_missing_secrets_are_generated_and_persisted(tmp_path, monkeypatch):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    first = Settings()
    second = Settings()
    assert first.jwt_secret != first.jwt_refresh_secret
    assert first.jwt_secret == second.jwt_secret
    assert first.jwt_refresh_secret == second.jwt_refresh_secret
    assert (tmp_path / ".jwt_secret").exists()
    assert (tmp_path / ".jwt_refresh_secret").exists()


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRY", "60")
    monkeypatch.setenv("REFRESH_TOKEN_EXPIRY", "120")
    monkeypatch.setenv("FRONTEND_URL", "https://app.talenthub.test")
    reset_settings_cache()
    settings = get_settings()
    assert settings.access_token_ttl_seconds == 60
    assert settings.refresh_token_ttl_seconds == 120
    assert settings.frontend_url == "https://app.talenthub.test"
    assert settings.test_mode is True
    reset_settings_cache()
