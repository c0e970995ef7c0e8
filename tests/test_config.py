"""Unit tests for core/config.py -- Settings validation and defaults.

Settings() is constructed directly (not through the cached get_settings())
with a controlled environment so each case is isolated.
"""

import pytest

from core.config import DEFAULT_CSRF_COOKIE, DEFAULT_SESSION_COOKIE, DEV_TOKEN_PEPPER, Settings

_VARS = (
    "DEBUG",
    "AUTH_TOKEN_PEPPER",
    "AUTH_COOKIE_SECURE",
    "AUTH_SESSION_TTL_HOURS",
    "AUTH_BCRYPT_ROUNDS",
    "AUTH_SESSION_COOKIE_NAME",
    "AUTH_CSRF_COOKIE_NAME",
)


@pytest.fixture
def env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _settings() -> Settings:
    return Settings(_env_file=None)


class TestPepperPolicy:
    def test_production_requires_pepper(self, env) -> None:
        env.setenv("DEBUG", "false")
        with pytest.raises(ValueError, match="AUTH_TOKEN_PEPPER"):
            _settings()

    def test_debug_falls_back_to_dev_pepper(self, env) -> None:
        env.setenv("DEBUG", "true")
        assert _settings().auth_token_pepper == DEV_TOKEN_PEPPER

    def test_explicit_pepper_used(self, env) -> None:
        env.setenv("AUTH_TOKEN_PEPPER", "  s3cret ")
        assert _settings().auth_token_pepper == "s3cret"


class TestCookieSettings:
    def test_secure_defaults_on_in_production(self, env) -> None:
        env.setenv("AUTH_TOKEN_PEPPER", "x")
        assert _settings().auth_cookie_secure is True

    def test_secure_defaults_off_in_debug(self, env) -> None:
        env.setenv("DEBUG", "true")
        assert _settings().auth_cookie_secure is False

    def test_secure_explicit_override(self, env) -> None:
        env.setenv("DEBUG", "true")
        env.setenv("AUTH_COOKIE_SECURE", "true")
        assert _settings().auth_cookie_secure is True

    def test_blank_cookie_names_use_defaults(self, env) -> None:
        env.setenv("DEBUG", "true")
        env.setenv("AUTH_SESSION_COOKIE_NAME", "   ")
        env.setenv("AUTH_CSRF_COOKIE_NAME", "")
        settings = _settings()
        assert settings.auth_session_cookie_name == DEFAULT_SESSION_COOKIE
        assert settings.auth_csrf_cookie_name == DEFAULT_CSRF_COOKIE


class TestNumericFallbacks:
    @pytest.mark.parametrize("raw", ["0", "-3", "soon"])
    def test_bad_ttl_uses_default(self, env, raw) -> None:
        env.setenv("DEBUG", "true")
        env.setenv("AUTH_SESSION_TTL_HOURS", raw)
        assert _settings().auth_session_ttl_hours == 24

    def test_ttl_override(self, env) -> None:
        env.setenv("DEBUG", "true")
        env.setenv("AUTH_SESSION_TTL_HOURS", "8")
        assert _settings().auth_session_ttl_hours == 8

    def test_bcrypt_rounds_floor(self, env) -> None:
        env.setenv("DEBUG", "true")
        env.setenv("AUTH_BCRYPT_ROUNDS", "2")
        assert _settings().auth_bcrypt_rounds == 4
