"""
auth/sessions.py -- Session lifecycle and authorization context resolution.

Pattern: Repository (same shape as AuthStore). SessionStore issues, revokes,
and resolves sessions. It never sees a raw token after create_session()
returns it -- every lookup hashes the presented token first.

Validity rule, enforced in a single query by resolve_context():
    revoked_at IS NULL AND expires_at > now AND users.is_active

resolve_context() returns None for every failure reason (unknown, expired,
revoked, deactivated owner). Callers must not try to tell them apart; the
guard layer turns None into one uniform 401.

There is deliberately no cache in front of resolve_context(). Every request
pays one round-trip, and in exchange a revoked session is dead on its very
next use. Adding a cache requires revocation-driven invalidation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, select, true, update
from sqlalchemy.engine import Engine

from auth.models import AuthorizationContext, AuthUser, IssuedSession, Session
from auth.schema import (
    iso_utc,
    new_id,
    permissions,
    role_permissions,
    roles,
    sessions,
    user_roles,
    users,
    utcnow,
)
from auth.tokens import generate_session_token, hash_session_token

logger = logging.getLogger("stockshunter.auth.sessions")


class SessionStore:
    """Repository for Session rows and AuthorizationContext resolution.

    Usage:
        sessions = SessionStore(engine, ttl_hours=24)
        issued = sessions.create_session(user_id, "203.0.113.7", "Mozilla/5.0")
        context = sessions.resolve_context(issued.raw_token)
        sessions.revoke_by_token(issued.raw_token)

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(
        self,
        engine: Engine,
        ttl_hours: int = 24,
        pepper: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.ttl = timedelta(hours=ttl_hours)
        self._pepper = pepper
        self._clock = clock

    def _hash(self, raw_token: str) -> str:
        return hash_session_token(raw_token, self._pepper)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedSession:
        """Insert a new session and return the raw token for cookie delivery.

        The raw token is not retrievable again -- only its peppered hash is stored.
        """
        raw_token = generate_session_token()
        now = self._clock()
        session_id = new_id()
        expires_at = iso_utc(now + self.ttl)
        with self.engine.begin() as conn:
            conn.execute(
                sessions.insert().values(
                    id=session_id,
                    user_id=user_id,
                    token_hash=self._hash(raw_token),
                    created_at=iso_utc(now),
                    expires_at=expires_at,
                    ip_address=client_ip,
                    user_agent=user_agent,
                )
            )
        return IssuedSession(session_id=session_id, raw_token=raw_token, expires_at=expires_at)

    def rotate_session(
        self,
        context: AuthorizationContext,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedSession:
        """Issue a fresh session for the same user, then revoke the one just used.

        Sliding expiration: each call to GET /auth/me pushes expiry out by a
        full TTL without a re-login. Only the presented session is revoked;
        the user's sessions on other clients are untouched.
        """
        issued = self.create_session(context.user.id, client_ip, user_agent)
        self.revoke_by_id(context.session_id)
        return issued

    # ------------------------------------------------------------------
    # Revocation -- all idempotent, no-op when nothing matches
    # ------------------------------------------------------------------

    def revoke_by_token(self, raw_token: str) -> bool:
        """Revoke the unrevoked session matching this raw token. Returns True if one was revoked."""
        return self._revoke(sessions.c.token_hash == self._hash(raw_token)) > 0

    def revoke_by_id(self, session_id: str) -> bool:
        """Revoke a session by primary key. Used during rotation."""
        return self._revoke(sessions.c.id == session_id) > 0

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every open session for a user. Returns the number revoked.

        Called on deactivation and forced password reset.
        """
        count = self._revoke(sessions.c.user_id == user_id)
        if count:
            logger.info("Revoked %d session(s) for user %s", count, user_id)
        return count

    def _revoke(self, condition) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(sessions)
                .where(and_(condition, sessions.c.revoked_at.is_(None)))
                .values(revoked_at=iso_utc(self._clock()))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session | None:
        """Fetch a session row regardless of validity. Admin/diagnostic use only."""
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def resolve_context(self, raw_token: Optional[str]) -> AuthorizationContext | None:
        """Resolve a raw token to a fresh AuthorizationContext, or None.

        One query joins session -> user -> user_roles -> roles ->
        role_permissions -> permissions, filtered to valid sessions of active
        users. Outer joins produce one row per (role, permission) pair; roles
        and permissions are de-duplicated here, preserving first-seen order.
        """
        if not raw_token:
            return None
        now = iso_utc(self._clock())
        stmt = (
            select(
                users.c.id.label("user_id"),
                users.c.email,
                users.c.full_name,
                users.c.is_active,
                sessions.c.id.label("session_id"),
                sessions.c.expires_at,
                roles.c.name.label("role_name"),
                permissions.c.key.label("permission_key"),
            )
            .select_from(
                sessions.join(users, users.c.id == sessions.c.user_id)
                .outerjoin(user_roles, user_roles.c.user_id == users.c.id)
                .outerjoin(roles, roles.c.id == user_roles.c.role_id)
                .outerjoin(role_permissions, role_permissions.c.role_id == roles.c.id)
                .outerjoin(permissions, permissions.c.id == role_permissions.c.permission_id)
            )
            .where(
                and_(
                    sessions.c.token_hash == self._hash(raw_token),
                    sessions.c.revoked_at.is_(None),
                    sessions.c.expires_at > now,
                    users.c.is_active == true(),
                )
            )
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        if not rows:
            return None

        first = rows[0]
        role_names = list(dict.fromkeys(r.role_name for r in rows if r.role_name is not None))
        permission_keys = list(dict.fromkeys(r.permission_key for r in rows if r.permission_key is not None))
        return AuthorizationContext(
            user=AuthUser(
                id=first.user_id,
                email=first.email,
                full_name=first.full_name,
                is_active=bool(first.is_active),
                roles=tuple(role_names),
                permissions=tuple(permission_keys),
            ),
            session_id=first.session_id,
            session_expires_at=first.expires_at,
        )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
