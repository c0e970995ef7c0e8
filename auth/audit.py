"""
auth/audit.py -- Best-effort append-only audit log.

write() must never fail the request that triggered it. Any persistence error
is logged with its traceback and swallowed; the caller's outcome is
independent of whether the audit row landed.

list_entries() backs GET /admin/audit-logs: optional time range, actor and
action filters, newest first, capped at 500 rows.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuditLogEntry
from auth.schema import audit_logs, iso_utc, new_id, users, utcnow

logger = logging.getLogger("stockshunter.auth.audit")

AUDIT_LIST_LIMIT = 500

# Actions written by the auth and admin routes.
LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"
LOGOUT = "LOGOUT"
USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
ROLE_CREATED = "ROLE_CREATED"
ROLE_UPDATED = "ROLE_UPDATED"
ROLE_ASSIGNED = "ROLE_ASSIGNED"
ROLE_PERMISSIONS_UPDATED = "ROLE_PERMISSIONS_UPDATED"


class AuditLogger:
    """Writes and queries audit_logs rows.

    Usage:
        audit = AuditLogger(engine)
        audit.write(AuditLogEntry(action="LOGOUT", entity_type="session", actor_user_id=uid))
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def write(self, entry: AuditLogEntry) -> bool:
        """Insert one audit row. Returns False (never raises) if the write failed."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    audit_logs.insert().values(
                        id=new_id(),
                        actor_user_id=entry.actor_user_id,
                        action=entry.action,
                        entity_type=entry.entity_type,
                        entity_id=entry.entity_id,
                        metadata=entry.metadata or {},
                        created_at=iso_utc(self._clock()),
                        ip_address=entry.ip_address,
                    )
                )
        except (SQLAlchemyError, TypeError, ValueError):
            # TypeError/ValueError: metadata that is not JSON-serializable.
            logger.exception("audit log write failed (action=%s)", entry.action)
            return False
        return True

    def record(
        self,
        action: str,
        entity_type: str,
        *,
        actor_user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> bool:
        """Keyword-argument shorthand for write()."""
        return self.write(
            AuditLogEntry(
                action=action,
                entity_type=entity_type,
                actor_user_id=actor_user_id,
                entity_id=entity_id,
                metadata=metadata or {},
                ip_address=ip_address,
            )
        )

    def list_entries(
        self,
        from_: Optional[datetime] = None,
        to: Optional[datetime] = None,
        actor: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        """Return matching entries, newest first, at most AUDIT_LIST_LIMIT rows."""
        conditions = []
        if from_ is not None:
            conditions.append(audit_logs.c.created_at >= iso_utc(from_))
        if to is not None:
            conditions.append(audit_logs.c.created_at <= iso_utc(to))
        if actor:
            conditions.append(audit_logs.c.actor_user_id == actor)
        if action:
            conditions.append(audit_logs.c.action == action)

        stmt = select(audit_logs, users.c.email.label("actor_email")).select_from(
            audit_logs.outerjoin(users, users.c.id == audit_logs.c.actor_user_id)
        )
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(audit_logs.c.created_at.desc()).limit(AUDIT_LIST_LIMIT)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row) -> AuditLogEntry:
    mapping = row._mapping
    return AuditLogEntry(
        id=mapping["id"],
        actor_user_id=mapping["actor_user_id"],
        actor_email=mapping["actor_email"],
        action=mapping["action"],
        entity_type=mapping["entity_type"],
        entity_id=mapping["entity_id"],
        metadata=mapping["metadata"] or {},
        created_at=mapping["created_at"],
        ip_address=mapping["ip_address"],
    )
