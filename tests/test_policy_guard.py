"""Unit tests for auth/policy.py and the request guards in auth/guard.py.

Covers:
- AnyOf / AllOf / AnyRole evaluation, admin short-circuit rules
- uniform 401/403 Denial values
- client IP derivation (socket peer; forwarded headers only from trusted proxies)
- same-origin check and the opt-in double-submit CSRF check
"""

from __future__ import annotations

import pytest
from starlette.requests import Request

import auth.guard as guard
from auth.guard import (
    CSRF_FAILED,
    FORBIDDEN,
    INVALID_ORIGIN,
    ensure_same_origin,
    get_client_ip,
    require,
    require_permission,
    require_role,
    verify_csrf_token,
)
from auth.models import AuthorizationContext, AuthUser
from auth.policy import AllOf, AnyOf, AnyRole, evaluate, is_admin
from core.config import get_settings


def make_context(roles=(), permissions=()) -> AuthorizationContext:
    return AuthorizationContext(
        user=AuthUser(
            id="u1",
            email="u@example.com",
            full_name="U",
            is_active=True,
            roles=tuple(roles),
            permissions=tuple(permissions),
        ),
        session_id="s1",
        session_expires_at="2099-01-01T00:00:00.000000Z",
    )


def make_request(method: str = "POST", headers: dict | None = None, client=("10.0.0.9", 5000)) -> Request:
    raw = [(b"host", b"app.example")]
    for k, v in (headers or {}).items():
        raw.append((k.lower().encode("latin-1"), v.encode("latin-1")))
    scope = {
        "type": "http",
        "method": method,
        "scheme": "https",
        "path": "/api/v1/admin/users",
        "raw_path": b"/api/v1/admin/users",
        "query_string": b"",
        "headers": raw,
        "server": ("app.example", 443),
        "client": client,
    }
    return Request(scope)


class TestPolicy:
    def test_any_of_needs_one_key(self) -> None:
        ctx = make_context(permissions=("investments:read",))
        assert evaluate(ctx, AnyOf("investments:read", "investments:write"))
        assert not evaluate(ctx, AnyOf("admin:users:read"))

    def test_all_of_needs_every_key(self) -> None:
        ctx = make_context(permissions=("investments:read",))
        assert not evaluate(ctx, AllOf("investments:read", "investments:write"))
        ctx = make_context(permissions=("investments:read", "investments:write"))
        assert evaluate(ctx, AllOf("investments:read", "investments:write"))

    def test_admin_role_satisfies_any_permission(self) -> None:
        ctx = make_context(roles=("ADMIN",))
        assert evaluate(ctx, AnyOf("admin:audit:read"))
        assert evaluate(ctx, AllOf("a", "b", "c"))

    def test_admin_role_match_is_case_insensitive(self) -> None:
        assert is_admin(make_context(roles=("admin",)))

    def test_admin_all_permission_is_admin(self) -> None:
        ctx = make_context(permissions=("admin:all",))
        assert is_admin(ctx)
        assert evaluate(ctx, AnyOf("admin:users:manage"))

    def test_admin_does_not_short_circuit_role_requirement(self) -> None:
        ctx = make_context(permissions=("admin:all",))
        assert not evaluate(ctx, AnyRole("MANAGER"))

    def test_role_requirement_case_insensitive(self) -> None:
        assert evaluate(make_context(roles=("Manager",)), AnyRole("MANAGER", "ANALYST"))

    def test_unknown_requirement_raises(self) -> None:
        with pytest.raises(TypeError):
            evaluate(make_context(), object())


class TestDenials:
    def test_require_returns_none_when_satisfied(self) -> None:
        assert require(make_context(permissions=("x",)), AnyOf("x")) is None

    def test_missing_permission_is_uniform_403(self) -> None:
        denial = require_permission(make_context(), "admin:users:read")
        assert denial is FORBIDDEN
        assert denial.body() == {"error": {"code": "forbidden", "message": "Forbidden."}}

    def test_missing_role_is_same_403(self) -> None:
        assert require_role(make_context(roles=("VIEWER",)), "ADMIN") is FORBIDDEN

    def test_http_exception_carries_envelope_fields(self) -> None:
        exc = FORBIDDEN.to_http_exception()
        assert exc.status_code == 403
        assert exc.detail == {"code": "forbidden", "message": "Forbidden."}


class TestClientIp:
    @pytest.fixture
    def behind_proxy(self, monkeypatch):
        settings = get_settings().model_copy(update={"trusted_proxy_ips": ["10.0.0.9"]})
        monkeypatch.setattr(guard, "get_settings", lambda: settings)
        return settings

    def test_forwarded_headers_ignored_from_untrusted_peer(self) -> None:
        req = make_request(headers={"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.2"})
        assert get_client_ip(req) == "10.0.0.9"

    def test_forwarded_for_first_hop_behind_trusted_proxy(self, behind_proxy) -> None:
        req = make_request(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(req) == "203.0.113.7"

    def test_real_ip_fallback_behind_trusted_proxy(self, behind_proxy) -> None:
        assert get_client_ip(make_request(headers={"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"

    def test_trusted_proxy_without_headers_is_the_peer(self, behind_proxy) -> None:
        assert get_client_ip(make_request()) == "10.0.0.9"

    def test_no_client_at_all(self) -> None:
        assert get_client_ip(make_request(client=None)) is None


class TestSameOrigin:
    def test_matching_origin_passes(self) -> None:
        assert ensure_same_origin(make_request(headers={"Origin": "https://app.example"})) is None

    def test_foreign_origin_rejected(self) -> None:
        assert ensure_same_origin(make_request(headers={"Origin": "https://evil.example"})) is INVALID_ORIGIN

    def test_missing_origin_rejected(self) -> None:
        assert ensure_same_origin(make_request()) is INVALID_ORIGIN

    def test_garbage_origin_rejected(self) -> None:
        assert ensure_same_origin(make_request(headers={"Origin": "null"})) is INVALID_ORIGIN

    def test_safe_methods_exempt(self) -> None:
        assert ensure_same_origin(make_request(method="GET")) is None


class TestDoubleSubmitCsrf:
    def test_disabled_by_default(self) -> None:
        assert verify_csrf_token(make_request()) is None

    @pytest.fixture
    def enabled(self, monkeypatch):
        settings = get_settings().model_copy(update={"auth_csrf_double_submit": True})
        monkeypatch.setattr(guard, "get_settings", lambda: settings)
        return settings

    def test_matching_header_passes(self, enabled) -> None:
        req = make_request(
            headers={"Cookie": f"{enabled.auth_csrf_cookie_name}=tok123", "X-CSRF-Token": "tok123"},
        )
        assert verify_csrf_token(req) is None

    def test_mismatch_rejected(self, enabled) -> None:
        req = make_request(
            headers={"Cookie": f"{enabled.auth_csrf_cookie_name}=tok123", "X-CSRF-Token": "other"},
        )
        assert verify_csrf_token(req) is CSRF_FAILED

    def test_missing_header_rejected(self, enabled) -> None:
        req = make_request(headers={"Cookie": f"{enabled.auth_csrf_cookie_name}=tok123"})
        assert verify_csrf_token(req) is CSRF_FAILED
