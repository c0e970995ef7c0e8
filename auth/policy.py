"""
auth/policy.py -- Declarative authorization requirements.

All permission and role checks go through evaluate(). Routes declare what
they need as data (AnyOf / AllOf / AnyRole) instead of chaining booleans,
so the rules live in one place and can be tested exhaustively.

Rules:
  - A fully privileged identity (role ADMIN, any case, OR permission
    admin:all) satisfies every permission requirement. Both markers are
    checked because different callers grant admin either way.
  - Role requirements compare names case-insensitively and are NOT
    short-circuited by admin status.
  - AnyOf() with no keys is never satisfied by a non-admin.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.models import AuthorizationContext

ADMIN_ROLE = "ADMIN"
ADMIN_PERMISSION = "admin:all"


@dataclass(frozen=True)
class AnyOf:
    """Satisfied when the context holds at least one of the permission keys."""

    keys: tuple[str, ...]

    def __init__(self, *keys: str) -> None:
        object.__setattr__(self, "keys", tuple(keys))


@dataclass(frozen=True)
class AllOf:
    """Satisfied when the context holds every one of the permission keys."""

    keys: tuple[str, ...]

    def __init__(self, *keys: str) -> None:
        object.__setattr__(self, "keys", tuple(keys))


@dataclass(frozen=True)
class AnyRole:
    """Satisfied when the context holds at least one of the role names (case-insensitive)."""

    names: tuple[str, ...]

    def __init__(self, *names: str) -> None:
        object.__setattr__(self, "names", tuple(names))


Requirement = Union[AnyOf, AllOf, AnyRole]


def has_role(context: AuthorizationContext, *names: str) -> bool:
    held = {r.upper() for r in context.roles}
    return any(n.upper() in held for n in names)


def has_permission(context: AuthorizationContext, *keys: str) -> bool:
    held = set(context.permissions)
    return any(k in held for k in keys)


def is_admin(context: AuthorizationContext) -> bool:
    """True if the identity carries the ADMIN role or the admin:all permission."""
    return has_role(context, ADMIN_ROLE) or has_permission(context, ADMIN_PERMISSION)


def evaluate(context: AuthorizationContext, requirement: Requirement) -> bool:
    """Return True if context satisfies requirement."""
    if isinstance(requirement, AnyRole):
        return has_role(context, *requirement.names)
    if is_admin(context):
        return True
    if isinstance(requirement, AnyOf):
        return has_permission(context, *requirement.keys)
    if isinstance(requirement, AllOf):
        held = set(context.permissions)
        return all(k in held for k in requirement.keys)
    raise TypeError(f"Unsupported requirement: {requirement!r}")
