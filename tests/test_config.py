"""Unit tests for core/config.py -- the SECRET_KEY policy and derived settings."""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings
from core.models import DEFAULT_FIELD_MAP

_KEY = "k" * 32


def _settings(monkeypatch, **env) -> Settings:
    for name in ("DEBUG", "SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return Settings(_env_file=None)


class TestSecretKey:
    def test_generated_in_debug(self, monkeypatch):
        settings = _settings(monkeypatch, DEBUG="true")
        assert len(settings.secret_key) == 64

    def test_required_in_production(self, monkeypatch):
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            _settings(monkeypatch)

    def test_short_key_rejected(self, monkeypatch):
        with pytest.raises(ValidationError, match="at least 32 characters"):
            _settings(monkeypatch, DEBUG="true", SECRET_KEY="short")


class TestDerived:
    def test_defaults(self, monkeypatch):
        settings = _settings(monkeypatch, SECRET_KEY=_KEY)
        assert settings.authority == "https://login.microsoftonline.com/organizations"
        assert settings.login_scope_list == ["User.Read"]
        assert settings.list_scope_list == ["Sites.Read.All"]
        assert settings.allowed_host_list == ["localhost", "127.0.0.1", "*.localhost"]
        assert settings.list_field_map == dict(DEFAULT_FIELD_MAP)

    def test_from_environment(self, monkeypatch):
        settings = _settings(
            monkeypatch,
            SECRET_KEY=_KEY,
            TENANT_ID="contoso.onmicrosoft.com",
            LOGIN_SCOPES="openid, User.Read ,",
            LIST_FIELD_MAP='{"Audit Remark": "field_8"}',
        )
        assert settings.authority == "https://login.microsoftonline.com/contoso.onmicrosoft.com"
        assert settings.login_scope_list == ["openid", "User.Read"]
        assert settings.list_field_map == {"Audit Remark": "field_8"}

    def test_paging_must_be_positive(self, monkeypatch):
        with pytest.raises(ValidationError, match="must be positive"):
            _settings(monkeypatch, SECRET_KEY=_KEY, LIST_MAX_PAGES="0")


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
