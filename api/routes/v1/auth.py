"""
api/routes/v1/auth.py -- Login, logout, and current-session endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; sets session + CSRF cookies
  POST /api/v1/auth/logout  -- revokes the presented session, clears cookies
  GET  /api/v1/auth/me      -- current identity; rotates the session (sliding TTL)

Security:
  [L1] Login and logout require a same-origin Origin header (CSRF).
  [L2] authenticate_user() equalizes timing between unknown email and wrong
       password -- use it, never inline lookup + verify.
  [L3] Failed logins count against the (IP, email) bucket in LoginThrottle;
       a blocked key gets 429 with Retry-After before any password check.
  [L4] Any session token that arrives with a login request is revoked before
       the new session is issued (no session fixation).
  [L5] Cache-Control: no-store on every response that carries identity.
  The slowapi per-IP cap (LOGIN_RATE_LIMIT) sits in front of all of this.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, LoginUser, MeResponse
from auth import audit as actions
from auth.dependencies import enforce_same_origin, get_auth_context, try_get_auth_context
from auth.models import AuthorizationContext
from auth.guard import get_client_ip, get_session_token, get_user_agent
from auth.throttle import throttle_key
from auth.tokens import authenticate_user, clear_session_cookies, normalize_email, set_session_cookies
from core.config import get_settings

logger = logging.getLogger("stockshunter.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:   public, same-origin, throttled
# - POST /api/v1/auth/logout:  public, same-origin -- revoking needs no valid session
# - GET  /api/v1/auth/me:      requires auth (get_auth_context)
router = APIRouter()


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})
    resp.headers["Cache-Control"] = "no-store"  # [L5]
    return resp


@limiter.limit(get_settings().login_rate_limit)  # must sit ABOVE @router so SlowAPIMiddleware finds the limit
@router.post("/auth/login", response_model=LoginResponse, dependencies=[Depends(enforce_same_origin)])
def login(request: Request, payload: Any = Body(default=None)) -> JSONResponse:
    """Authenticate with email and password; issue a session.

    Every credential failure (unknown email, wrong password, inactive
    account) returns the same 401 body. Malformed payloads return 400 with
    the same message so the validator does not become an oracle either.
    """
    try:
        body = LoginRequest.model_validate(payload)
    except ValidationError:
        return _error(400, "validation_error", "Invalid credentials.")

    state = request.app.state
    email = normalize_email(body.email)
    ip_address = get_client_ip(request)
    key = throttle_key(ip_address, email)

    throttle = state.login_throttle.check_allowed(key)  # [L3]
    if not throttle.allowed:
        resp = _error(429, "rate_limited", "Too many login attempts. Try again later.")
        resp.headers["Retry-After"] = str(throttle.retry_after_seconds)
        return resp

    user, known = authenticate_user(state.auth_store, email, body.password)  # [L2]
    if user is None:
        state.login_throttle.record_failure(key)
        state.audit.record(
            actions.LOGIN_FAILED,
            "user",
            actor_user_id=known.id if known else None,
            entity_id=known.id if known else None,
            metadata={"email": email},
            ip_address=ip_address,
        )
        return _error(401, "bad_credentials", "Invalid credentials.")

    state.login_throttle.record_success(key)

    presented = get_session_token(request)
    if presented:
        state.sessions.revoke_by_token(presented)  # [L4]

    issued = state.sessions.create_session(user.id, ip_address, get_user_agent(request))
    state.auth_store.update_last_login(user.id)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=LoginUser(id=user.id, email=user.email, full_name=user.full_name)).model_dump(),
    )
    set_session_cookies(resp, issued.raw_token, issued.expires_at)
    resp.headers["Cache-Control"] = "no-store"  # [L5]

    state.audit.record(
        actions.LOGIN_SUCCESS,
        "user",
        actor_user_id=user.id,
        entity_id=user.id,
        metadata={"email": email},
        ip_address=ip_address,
    )
    logger.info("Login succeeded for user %s", user.id)
    return resp


@router.post("/auth/logout", dependencies=[Depends(enforce_same_origin)])
def logout(request: Request) -> JSONResponse:
    """Revoke the presented session (if any) and clear both cookies.

    Always 200 for a same-origin request, valid session or not. A datastore
    failure still clears the cookies before reporting 500.
    """
    state = request.app.state
    raw_token = get_session_token(request)
    try:
        context = try_get_auth_context(request)
        if raw_token:
            state.sessions.revoke_by_token(raw_token)
    except SQLAlchemyError:
        logger.exception("Session revocation failed during logout")
        resp = _error(500, "internal_error", "Failed to sign out.")
        clear_session_cookies(resp)
        return resp

    resp = JSONResponse(content={"ok": True})
    clear_session_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"  # [L5]

    state.audit.record(
        actions.LOGOUT,
        "session",
        actor_user_id=context.user.id if context else None,
        entity_id=context.session_id if context else None,
        ip_address=get_client_ip(request),
    )
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, context: AuthorizationContext = Depends(get_auth_context)) -> JSONResponse:
    """Return the current identity and rotate the session.

    Rotation issues a new token with a full TTL and revokes the one just
    presented, so an active browser never hits expiry mid-use.
    """
    issued = request.app.state.sessions.rotate_session(context, get_client_ip(request), get_user_agent(request))
    resp = JSONResponse(content=MeResponse.build(context, issued.session_id, issued.expires_at).model_dump())
    set_session_cookies(resp, issued.raw_token, issued.expires_at)
    resp.headers["Cache-Control"] = "no-store"  # [L5]
    return resp
