"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. auth_token_pepper -> AUTH_TOKEN_PEPPER).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the DEBUG-conditional pepper policy and the
      cookie Secure flag default.

Security notes:
  [P1] In production mode (DEBUG not set or false), a missing AUTH_TOKEN_PEPPER
       is a hard startup failure. Session token hashes are keyed with the
       pepper; running without one would make stored hashes reproducible from
       a leaked token alone.

  [P2] AUTH_COOKIE_SECURE defaults to True outside DEBUG so session cookies
       are never sent over plain HTTP in production by accident.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("stockshunter.config")

DEFAULT_SESSION_COOKIE = "stocks_hunter_session"
DEFAULT_CSRF_COOKIE = "stocks_hunter_csrf"
DEFAULT_SESSION_TTL_HOURS = 24
DEFAULT_BCRYPT_ROUNDS = 12
DEV_TOKEN_PEPPER = "dev-only-pepper-change-me"

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'stockshunter_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, as long as DEBUG=true (the pepper
    is the only value that is mandatory in production).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    auth_session_cookie_name: str = DEFAULT_SESSION_COOKIE
    auth_csrf_cookie_name: str = DEFAULT_CSRF_COOKIE
    auth_session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS
    auth_bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    # Empty string is the sentinel for "not configured". The model_validator
    # below either substitutes the dev pepper or raises, so callers never see "".
    auth_token_pepper: str = ""
    # None means "derive from DEBUG" -- see resolve_auth_secrets().
    auth_cookie_secure: Optional[bool] = None
    auth_csrf_double_submit: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "30/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000"]
    # Peers whose X-Forwarded-For / X-Real-IP headers are believed. Empty: use
    # the socket peer only.
    trusted_proxy_ips: list[str] = []

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("auth_session_cookie_name", "auth_csrf_cookie_name", mode="before")
    @classmethod
    def blank_cookie_name_uses_default(cls, value, info):
        """Whitespace-only cookie names fall back to the built-in default."""
        if value is None or not str(value).strip():
            if info.field_name == "auth_csrf_cookie_name":
                return DEFAULT_CSRF_COOKIE
            return DEFAULT_SESSION_COOKIE
        return str(value).strip()

    @field_validator("auth_session_ttl_hours", "auth_bcrypt_rounds", mode="before")
    @classmethod
    def non_positive_uses_default(cls, value, info):
        """Unparseable or non-positive integers fall back to the default."""
        fallback = DEFAULT_SESSION_TTL_HOURS if info.field_name == "auth_session_ttl_hours" else DEFAULT_BCRYPT_ROUNDS
        try:
            parsed = int(float(value))
        except (TypeError, ValueError):
            return fallback
        return parsed if parsed > 0 else fallback

    @model_validator(mode="after")
    def resolve_auth_secrets(self) -> "Settings":
        """Enforce the pepper policy and derive the cookie Secure flag [P1][P2].

        Dev mode (DEBUG=true): fall back to a fixed development pepper with a
            warning. Sessions survive restarts; the value is public, so it must
            never be used in production.

        Production mode: refuse to start if AUTH_TOKEN_PEPPER is missing.
        """
        self.auth_token_pepper = self.auth_token_pepper.strip()
        if not self.auth_token_pepper:
            if self.debug:
                self.auth_token_pepper = DEV_TOKEN_PEPPER
                logger.warning("WARNING: Using the development AUTH_TOKEN_PEPPER. Do not run this in production.")
            else:
                raise ValueError(
                    "AUTH_TOKEN_PEPPER must be set in production. "
                    "Set AUTH_TOKEN_PEPPER in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.auth_cookie_secure is None:
            self.auth_cookie_secure = not self.debug
        # bcrypt rejects cost factors below 4.
        self.auth_bcrypt_rounds = max(self.auth_bcrypt_rounds, 4)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
