"""
auth/dependencies.py -- FastAPI Depends() adapters over auth/guard.py.

The guard functions return Denial values; these adapters raise the matching
HTTPException so route signatures stay declarative:

    @router.get("/admin/users")
    async def list_users(context = Depends(require_permissions("admin:users:read"))): ...

    @router.post("/admin/users", dependencies=[Depends(enforce_same_origin)])
    async def create_user(...): ...

Route-level `dependencies=[...]` run before parameter dependencies, so the
origin check fires before the session lookup on mutating routes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.guard import ensure_same_origin, require, require_auth, verify_csrf_token
from auth.models import AuthorizationContext
from auth.policy import AnyOf, Requirement


def try_get_auth_context(request: Request) -> AuthorizationContext | None:
    """Soft variant: the resolved context, or None. Never raises."""
    return require_auth(request).context


def get_auth_context(request: Request) -> AuthorizationContext:
    """Require a valid session. Raises HTTP 401 otherwise."""
    result = require_auth(request)
    if result.denial is not None:
        raise result.denial.to_http_exception()
    return result.context


def requires(requirement: Requirement) -> Callable[[Request], AuthorizationContext]:
    """Build a dependency that authenticates, then enforces requirement (401 / 403)."""

    def dependency(request: Request) -> AuthorizationContext:
        context = get_auth_context(request)
        denial = require(context, requirement)
        if denial is not None:
            raise denial.to_http_exception()
        return context

    return dependency


def require_permissions(*keys: str) -> Callable[[Request], AuthorizationContext]:
    """Any one of keys suffices; admins always pass."""
    return requires(AnyOf(*keys))


def enforce_same_origin(request: Request) -> None:
    """Raise HTTP 403 for cross-origin state-changing requests (and CSRF mismatch when enabled)."""
    denial = ensure_same_origin(request) or verify_csrf_token(request)
    if denial is not None:
        raise denial.to_http_exception()
