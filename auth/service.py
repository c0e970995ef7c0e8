"""
auth/service.py -- RBAC administration: validate, mutate, audit.

Every mutating method follows the same three steps:
  1. validate references (unknown ids -> NotFoundError)
  2. mutate through AuthStore / SessionStore
  3. write one audit entry (best-effort, never raises)

The service does no authorization. Admin routes enforce the route's
permission through auth/dependencies.py before calling in.

Errors:
  ConflictError  -- unique-key violation (duplicate email / role name). The
                    route maps it to 409 with ConflictError.message.
  NotFoundError  -- a referenced user / role / permission does not exist (404).
Anything else propagates unchanged and becomes a 500 at the API boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from auth import audit as actions
from auth.audit import AuditLogger
from auth.models import AuditLogEntry, Permission, Role, User
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import normalize_email


class ConflictError(Exception):
    """A unique constraint rejected the write."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(Exception):
    """A referenced entity does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Actor:
    """Who is performing an admin action, and from where (for the audit trail)."""

    user_id: Optional[str]
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class UserUpdateResult:
    updated_fields: tuple[str, ...]
    sessions_revoked: bool


class AdminService:
    """Administrative operations over users, roles, and permissions."""

    def __init__(self, store: AuthStore, sessions: SessionStore, audit: AuditLogger) -> None:
        self.store = store
        self.sessions = sessions
        self.audit = audit

    def _audit(self, actor: Actor, action: str, entity_type: str, entity_id: Optional[str], metadata: dict[str, Any]):
        self.audit.record(
            action,
            entity_type,
            actor_user_id=actor.user_id,
            entity_id=entity_id,
            metadata=metadata,
            ip_address=actor.ip_address,
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users_with_roles()

    def create_user(
        self,
        actor: Actor,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        is_active: bool = True,
    ) -> str:
        """Create a user; raises ConflictError("Email already exists.") on a duplicate."""
        normalized = normalize_email(email)
        try:
            user_id = self.store.create_user(
                User(
                    email=normalized,
                    password_hash=password_hash,
                    full_name=full_name.strip(),
                    is_active=is_active,
                )
            )
        except IntegrityError as exc:
            raise ConflictError("Email already exists.") from exc
        self._audit(actor, actions.USER_CREATED, "user", user_id, {"email": normalized})
        return user_id

    def update_user(
        self,
        actor: Actor,
        user_id: str,
        *,
        full_name: Optional[str] = None,
        is_active: Optional[bool] = None,
        password_hash: Optional[str] = None,
    ) -> UserUpdateResult:
        """Partially update a user.

        Deactivation or a new password hash revokes every open session of the
        user in the same call. The guard layer relies on this for immediate
        lockout: the next request from any of the user's browsers gets 401.
        """
        fields: dict[str, Any] = {}
        if full_name is not None:
            fields["full_name"] = full_name.strip()
        if is_active is not None:
            fields["is_active"] = is_active
        if password_hash is not None:
            fields["password_hash"] = password_hash

        if fields:
            found = self.store.update_user(user_id, **fields)
        else:
            found = self.store.get_user(user_id) is not None
        if not found:
            raise NotFoundError("User not found.")

        revoke = is_active is False or password_hash is not None
        if revoke:
            self.sessions.revoke_all_for_user(user_id)

        # Audit the admin-facing field name, not the column.
        updated = tuple("password" if f == "password_hash" else f for f in fields)
        self._audit(
            actor,
            actions.USER_UPDATED,
            "user",
            user_id,
            {"updated_fields": list(updated), "revoked_sessions": revoke},
        )
        return UserUpdateResult(updated_fields=updated, sessions_revoked=revoke)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def list_roles(self) -> list[Role]:
        return self.store.list_roles_with_permissions()

    def create_role(self, actor: Actor, *, name: str, description: Optional[str] = None) -> str:
        """Create a role; the name is trimmed and upper-cased. Duplicate -> ConflictError."""
        role_name = name.strip().upper()
        try:
            role_id = self.store.create_role(
                Role(name=role_name, description=description.strip() if description is not None else None)
            )
        except IntegrityError as exc:
            raise ConflictError("Role name already exists.") from exc
        self._audit(actor, actions.ROLE_CREATED, "role", role_id, {"role_name": role_name})
        return role_id

    def update_role(
        self,
        actor: Actor,
        role_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[str, ...]:
        """Rename and/or re-describe a role. Returns the updated field names."""
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name.strip().upper()
        if description is not None:
            fields["description"] = description.strip()
        try:
            found = self.store.update_role(role_id, **fields)
        except IntegrityError as exc:
            raise ConflictError("Role name already exists.") from exc
        if not found:
            raise NotFoundError("Role not found.")
        updated = tuple(fields)
        self._audit(actor, actions.ROLE_UPDATED, "role", role_id, {"updated_fields": list(updated)})
        return updated

    # ------------------------------------------------------------------
    # Permissions and mappings
    # ------------------------------------------------------------------

    def list_permissions(self) -> list[Permission]:
        return self.store.list_permissions()

    def assign_role_to_user(self, actor: Actor, *, user_id: str, role_id: str) -> None:
        """Grant a role. Re-assigning a held role succeeds without change."""
        if self.store.get_user(user_id) is None:
            raise NotFoundError("User not found.")
        if self.store.get_role(role_id) is None:
            raise NotFoundError("Role not found.")
        self.store.assign_role_to_user(user_id, role_id, assigned_by=actor.user_id)
        self._audit(
            actor,
            actions.ROLE_ASSIGNED,
            "user_role",
            user_id,
            {"user_id": user_id, "role_id": role_id},
        )

    def set_role_permissions(self, actor: Actor, *, role_id: str, permission_ids: list[str]) -> None:
        """Replace the role's permission set. Callers submit the complete desired set."""
        if self.store.get_role(role_id) is None:
            raise NotFoundError("Role not found.")
        missing = self.store.missing_permission_ids(permission_ids)
        if missing:
            raise NotFoundError(f"Unknown permission id: {missing[0]}")
        self.store.set_role_permissions(role_id, permission_ids)
        self._audit(
            actor,
            actions.ROLE_PERMISSIONS_UPDATED,
            "role",
            role_id,
            {"permission_count": len(set(permission_ids))},
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def list_audit_logs(
        self,
        from_: Optional[datetime] = None,
        to: Optional[datetime] = None,
        actor: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        return self.audit.list_entries(from_=from_, to=to, actor=actor, action=action)
