"""
auth/models.py -- Domain dataclasses for authentication and RBAC entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work.

Identifiers are UUID strings generated in Python so the same schema works on
SQLite (tests, local dev) and PostgreSQL. Timestamps are fixed-width ISO 8601
UTC strings (see auth/schema.py:iso_utc) so they sort lexicographically.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class User:
    """An identity that can log in.

    email is always stored normalized (trimmed, lower-cased) and is the sole
    lookup key. Users are never hard-deleted; deactivation flips is_active and
    revokes every open session.
    """

    email: str
    password_hash: str
    id: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool = True
    last_login_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    roles: list[str] = field(default_factory=list)  # role names, listing views only


@dataclass
class Role:
    """A named bundle of permissions. Names are upper-cased by callers."""

    name: str
    id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    permissions: list[str] = field(default_factory=list)  # permission keys, listing views only


@dataclass
class Permission:
    """An atomic capability, e.g. "investments:read"."""

    key: str
    id: Optional[str] = None
    description: Optional[str] = None


@dataclass
class Session:
    """One authenticated browser context.

    token_hash is sha256(raw_token:pepper). The raw token is handed to the
    client exactly once and never persisted.
    """

    user_id: str
    token_hash: str
    expires_at: str
    id: Optional[str] = None
    created_at: Optional[str] = None
    revoked_at: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class IssuedSession:
    """Result of creating a session. raw_token is the only copy of the secret."""

    session_id: str
    raw_token: str
    expires_at: str


@dataclass
class AuditLogEntry:
    """Append-only record of a security-relevant action."""

    action: str
    entity_type: str
    actor_user_id: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    actor_email: Optional[str] = None  # joined on read, never written


@dataclass(frozen=True)
class AuthUser:
    """The user half of an AuthorizationContext."""

    id: str
    email: str
    full_name: Optional[str]
    is_active: bool
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuthorizationContext:
    """Request-scoped bundle of identity, session, roles, and permissions.

    Computed fresh from the store on every request and never cached, so a
    revoked session or deactivated user is locked out on the very next call.
    """

    user: AuthUser
    session_id: str
    session_expires_at: str

    @property
    def roles(self) -> tuple[str, ...]:
        return self.user.roles

    @property
    def permissions(self) -> tuple[str, ...]:
        return self.user.permissions
