"""
auth/guard.py -- Request-level enforcement with discriminated results.

Guard functions return either a value or a Denial; they never raise. Route
code (or the FastAPI adapters in auth/dependencies.py) short-circuits on a
Denial uniformly:

    result = require_auth(request)
    if result.denial: return result.denial.to_response()

Per-request state machine:
    no cookie / cookie does not resolve -> 401 "Authentication required."
    resolves, requirement not met       -> 403 "Forbidden."
    resolves, requirement met           -> handler runs

401 and 403 bodies are identical for every cause. Callers learn neither
why a session was rejected nor which permission was missing.

Layer rule: may import from starlette/fastapi request and response types;
no imports from api/.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from auth.models import AuthorizationContext
from auth.policy import AnyOf, AnyRole, Requirement, evaluate
from core.config import get_settings

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
CSRF_HEADER = "X-CSRF-Token"


@dataclass(frozen=True)
class Denial:
    """A pre-built rejection: status plus the error envelope fields."""

    status_code: int
    code: str
    message: str

    def body(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body())

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message},
        )


UNAUTHENTICATED = Denial(401, "unauthorized", "Authentication required.")
FORBIDDEN = Denial(403, "forbidden", "Forbidden.")
INVALID_ORIGIN = Denial(403, "invalid_origin", "Invalid request origin.")
CSRF_FAILED = Denial(403, "csrf_failed", "Invalid CSRF token.")


@dataclass(frozen=True)
class AuthResult:
    """Either context is set and denial is None, or the reverse."""

    context: Optional[AuthorizationContext] = None
    denial: Optional[Denial] = None


# ---------------------------------------------------------------------------
# Request metadata
# ---------------------------------------------------------------------------


def get_client_ip(request: Request) -> str | None:
    """Client address for throttle keys and audit rows.

    The socket peer, unless that peer is listed in TRUSTED_PROXY_IPS; then
    X-Forwarded-For (first hop), X-Real-IP, and finally the peer itself.
    """
    peer = request.client.host if request.client else None
    if peer is None or peer not in get_settings().trusted_proxy_ips:
        return peer
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().auth_session_cookie_name) or None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def resolve_request_context(request: Request) -> AuthorizationContext | None:
    """Resolve the session cookie to a fresh context, or None."""
    token = get_session_token(request)
    if not token:
        return None
    return request.app.state.sessions.resolve_context(token)


def require_auth(request: Request) -> AuthResult:
    context = resolve_request_context(request)
    if context is None:
        return AuthResult(denial=UNAUTHENTICATED)
    return AuthResult(context=context)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def require(context: AuthorizationContext, requirement: Requirement) -> Denial | None:
    """Return None if context satisfies requirement, else the uniform 403."""
    return None if evaluate(context, requirement) else FORBIDDEN


def require_permission(context: AuthorizationContext, *keys: str) -> Denial | None:
    """Allow if admin, or if the context holds any of keys."""
    return require(context, AnyOf(*keys))


def require_role(context: AuthorizationContext, *names: str) -> Denial | None:
    """Allow if the context holds any of the role names (case-insensitive)."""
    return require(context, AnyRole(*names))


# ---------------------------------------------------------------------------
# CSRF defenses
# ---------------------------------------------------------------------------


def ensure_same_origin(request: Request) -> Denial | None:
    """Reject state-changing requests whose Origin host differs from ours.

    Safe methods are exempt. For everything else the Origin header is
    mandatory; a missing header, an unparsable value, or a host mismatch all
    produce the same 403. This is the binding CSRF control.
    """
    if request.method.upper() in SAFE_METHODS:
        return None
    origin = request.headers.get("origin")
    if not origin:
        return INVALID_ORIGIN
    try:
        parsed = urlparse(origin)
    except ValueError:
        return INVALID_ORIGIN
    if not parsed.scheme or not parsed.netloc:
        return INVALID_ORIGIN
    if parsed.netloc.lower() != request.url.netloc.lower():
        return INVALID_ORIGIN
    return None


def verify_csrf_token(request: Request) -> Denial | None:
    """Double-submit check: X-CSRF-Token must equal the CSRF cookie.

    Only enforced when AUTH_CSRF_DOUBLE_SUBMIT=true, and only on unsafe
    methods. It adds to ensure_same_origin(), never replaces it.
    """
    settings = get_settings()
    if not settings.auth_csrf_double_submit or request.method.upper() in SAFE_METHODS:
        return None
    cookie = request.cookies.get(settings.auth_csrf_cookie_name, "")
    header = request.headers.get(CSRF_HEADER, "")
    if not cookie or not header or not hmac.compare_digest(cookie.encode("utf-8"), header.encode("utf-8")):
        return CSRF_FAILED
    return None
