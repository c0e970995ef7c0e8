"""
auth/tokens.py -- Password hashing, session token, and CSRF token utilities.

Security design decisions:
  Passwords: bcrypt with a configurable cost factor (AUTH_BCRYPT_ROUNDS,
       default 12). Bcrypt is the right choice for low-entropy secrets because
       its cost factor makes brute-force expensive. The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered.

  Session tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       sha256(raw_token:pepper) so lookup is O(1) via a UNIQUE index. A slow
       hash is unnecessary for high-entropy tokens. The pepper lives only in
       server config, so a leaked sessions table cannot be replayed.

  CSRF tokens: independent random value, not bound to the session. The
       same-origin check in auth/guard.py is the binding control.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from typing import TYPE_CHECKING, Optional

import bcrypt

from auth.schema import parse_iso_utc
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AuthStore

logger = logging.getLogger("stockshunter.auth")


EMAIL_MAX_LENGTH = 320

# Syntax only. Special-use domains such as .local and .test are accepted.
_EMAIL_RE = re.compile(
    r"^(?!\.)(?!.*\.\.)[A-Z0-9_'+\-.]*[A-Z0-9_+-]@(?:[A-Z0-9][A-Z0-9-]*\.)+[A-Z]{2,}$",
    re.IGNORECASE,
)


def normalize_email(email: str) -> str:
    """Trim and lower-case an email. The only form ever stored or looked up."""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    """Shared rule for login, admin user creation, and the seed CLI."""
    candidate = email.strip()
    return len(candidate) <= EMAIL_MAX_LENGTH and _EMAIL_RE.match(candidate) is not None


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: Optional[int] = None) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    passwords at 128 characters, and the strength rules make the first 72
    bytes carry the entropy.
    """
    cost = rounds if rounds is not None else get_settings().auth_bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw does the constant-time comparison. A malformed stored hash
    is treated as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("stockshunter_timing_dummy")


def authenticate_user(store: AuthStore, email: str, password: str) -> tuple[Optional[User], Optional[User]]:
    """Verify an email/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password or inactive user: bcrypt runs against the real hash

    Returns (authenticated_user, known_user). authenticated_user is None on any
    failure; known_user is the looked-up record (or None) so the caller can
    attribute a failed-login audit entry without a second query.
    """
    user = store.get_user_by_email(normalize_email(email))
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None, None
    if not verify_password(password, user.password_hash):
        return None, user
    if not user.is_active:
        return None, user
    return user, user


# ---------------------------------------------------------------------------
# Session and CSRF tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return a new raw session token: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_session_token(raw_token: str, pepper: Optional[str] = None) -> str:
    """Return sha256(raw_token:pepper) as a hex string.

    Deterministic so the store can look sessions up by hash. The pepper is a
    server-only secret resolved by Settings (fails fast in production if unset).
    """
    key = pepper if pepper is not None else get_settings().auth_token_pepper
    return hashlib.sha256(f"{raw_token}:{key}".encode("utf-8")).hexdigest()


def generate_csrf_token() -> str:
    """Return an opaque anti-CSRF value (24 random bytes, hex)."""
    return secrets.token_hex(24)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(response, raw_token: str, expires_at: str, csrf_token: Optional[str] = None) -> None:
    """Write the session and CSRF cookies on a Starlette response.

    Both cookies share the session's expiry and SameSite=Strict. The session
    cookie is HttpOnly (JS cannot read it); the CSRF cookie is not, so the
    frontend can echo it in X-CSRF-Token when double-submit is enabled.
    Secure follows AUTH_COOKIE_SECURE (default: on outside DEBUG).
    """
    settings = get_settings()
    expires = parse_iso_utc(expires_at)
    response.set_cookie(
        settings.auth_session_cookie_name,
        value=raw_token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite="strict",
        path="/",
        expires=expires,
    )
    response.set_cookie(
        settings.auth_csrf_cookie_name,
        value=csrf_token or generate_csrf_token(),
        httponly=False,
        secure=settings.auth_cookie_secure,
        samesite="strict",
        path="/",
        expires=expires,
    )


def clear_session_cookies(response) -> None:
    """Expire both auth cookies on the client."""
    settings = get_settings()
    response.delete_cookie(
        settings.auth_session_cookie_name,
        path="/",
        secure=settings.auth_cookie_secure,
        httponly=True,
        samesite="strict",
    )
    response.delete_cookie(
        settings.auth_csrf_cookie_name,
        path="/",
        secure=settings.auth_cookie_secure,
        httponly=False,
        samesite="strict",
    )
