"""
auth/schema.py -- SQLAlchemy Core schema and engine factory for the auth tables.

Every repository in auth/ (AuthStore, SessionStore, AuditLogger) shares one
Engine created by create_auth_engine(). Route and dependency code never
touches SQL directly.

Constraints:
  users.email, roles.name, permissions.key, sessions.token_hash are UNIQUE.
  user_roles(user_id, role_id) and role_permissions(role_id, permission_id)
  have composite primary keys. Foreign keys cascade on delete, except
  user_roles.assigned_by and audit_logs.actor_user_id, which set NULL.

SQLite needs PRAGMA foreign_keys=ON per connection for the cascades to fire;
the connect listener below sets it alongside WAL mode.

Timestamps are stored as fixed-width ISO 8601 UTC strings
("2026-01-31T09:15:00.000000Z"). Fixed width keeps lexicographic order equal
to chronological order, so expires_at > :now works on any backend.

Security: all queries in auth/ use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine

metadata = MetaData()

_ID = String(36)
_TS = String(32)

users = Table(
    "users",
    metadata,
    Column("id", _ID, primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("full_name", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("last_login_at", _TS),
    Column("created_at", _TS, nullable=False),
    Column("updated_at", _TS, nullable=False),
    Index("users_is_active_idx", "is_active"),
)

roles = Table(
    "roles",
    metadata,
    Column("id", _ID, primary_key=True),
    Column("name", String(80), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", _TS, nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", _ID, primary_key=True),
    Column("key", String(120), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", _TS, nullable=False),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", _ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", _ID, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("assigned_by", _ID, ForeignKey("users.id", ondelete="SET NULL")),
    Column("assigned_at", _TS, nullable=False),
    PrimaryKeyConstraint("user_id", "role_id"),
    Index("user_roles_role_id_idx", "role_id"),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", _ID, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", _ID, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
    Index("role_permissions_permission_id_idx", "permission_id"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", _ID, primary_key=True),
    Column("user_id", _ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("created_at", _TS, nullable=False),
    Column("expires_at", _TS, nullable=False),
    Column("revoked_at", _TS),
    Column("ip_address", Text),
    Column("user_agent", Text),
    Index("sessions_user_id_idx", "user_id"),
    Index("sessions_expires_at_idx", "expires_at"),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", _ID, primary_key=True),
    Column("actor_user_id", _ID, ForeignKey("users.id", ondelete="SET NULL")),
    Column("action", String(64), nullable=False),
    Column("entity_type", String(64), nullable=False),
    Column("entity_id", Text),
    Column("metadata", JSON, nullable=False),
    Column("created_at", _TS, nullable=False),
    Column("ip_address", Text),
    Index("audit_logs_created_at_idx", "created_at"),
    Index("audit_logs_actor_user_id_idx", "actor_user_id"),
    Index("audit_logs_action_idx", "action"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(moment: datetime) -> str:
    """Format a datetime as the fixed-width UTC string stored in every _TS column."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_iso_utc(value: str) -> datetime:
    """Inverse of iso_utc()."""
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def insert_ignore(conn: Connection, table: Table, values: dict) -> None:
    """INSERT ... ON CONFLICT DO NOTHING for the dialects we deploy on.

    Used for idempotent mapping rows (user_roles, role_permissions) where an
    existing pair is a no-op rather than an error.
    """
    if conn.dialect.name == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing()
    else:
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing()
    conn.execute(stmt)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_auth_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine
