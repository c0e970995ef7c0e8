"""
auth/seed.py -- Default permission catalog, roles, and first-admin bootstrap.

seed_auth() is idempotent: permissions and roles are upserted by their unique
key/name (descriptions refreshed), mapping rows are insert-or-ignore, and the
admin user is created only if the email is not registered yet (an existing
account keeps its password). Everything runs in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Connection, Engine

from auth.schema import insert_ignore, iso_utc, new_id, permissions, role_permissions, roles, user_roles, users, utcnow
from auth.tokens import hash_password, normalize_email

logger = logging.getLogger("stockshunter.auth.seed")

DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("investments:read", "Read screener and symbol investment data."),
    ("investments:write", "Create and update user investment artifacts."),
    ("admin:users:read", "View users in the admin panel."),
    ("admin:users:manage", "Create/update/deactivate users."),
    ("admin:roles:read", "View roles in the admin panel."),
    ("admin:roles:manage", "Create/update roles and mappings."),
    ("admin:permissions:read", "View permissions list."),
    ("admin:audit:read", "View security and admin audit logs."),
    ("admin:all", "Platform super admin access."),
)

DEFAULT_ROLES: tuple[tuple[str, str], ...] = (
    ("ADMIN", "Full access to all resources and admin controls."),
    ("MANAGER", "Manage investments and team workflows."),
    ("ANALYST", "Analyze and save investment scenarios."),
    ("VIEWER", "Read-only access to investment data."),
)

DEFAULT_ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "ADMIN": tuple(key for key, _ in DEFAULT_PERMISSIONS),
    "MANAGER": ("investments:read", "investments:write"),
    "ANALYST": ("investments:read", "investments:write"),
    "VIEWER": ("investments:read",),
}


@dataclass(frozen=True)
class SeedResult:
    admin_user_id: Optional[str]
    admin_created: bool
    permission_count: int
    role_count: int


def _upsert(conn: Connection, table, unique_col: str, value: str, description: str) -> str:
    column = table.c[unique_col]
    existing = conn.execute(select(table.c.id).where(column == value)).scalar()
    if existing is not None:
        conn.execute(update(table).where(table.c.id == existing).values(description=description))
        return existing
    row_id = new_id()
    conn.execute(
        table.insert().values(
            id=row_id,
            description=description,
            created_at=iso_utc(utcnow()),
            **{unique_col: value},
        )
    )
    return row_id


def seed_auth(
    engine: Engine,
    admin_email: Optional[str] = None,
    admin_password: Optional[str] = None,
    admin_name: str = "Admin User",
    bcrypt_rounds: Optional[int] = None,
) -> SeedResult:
    """Install the default RBAC catalog and, if credentials are given, the first admin."""
    with engine.begin() as conn:
        permission_ids = {key: _upsert(conn, permissions, "key", key, desc) for key, desc in DEFAULT_PERMISSIONS}
        role_ids = {name: _upsert(conn, roles, "name", name, desc) for name, desc in DEFAULT_ROLES}

        for role_name, keys in DEFAULT_ROLE_PERMISSIONS.items():
            for key in keys:
                insert_ignore(
                    conn,
                    role_permissions,
                    {"role_id": role_ids[role_name], "permission_id": permission_ids[key]},
                )

        admin_id: Optional[str] = None
        created = False
        if admin_email and admin_password:
            email = normalize_email(admin_email)
            admin_id = conn.execute(select(users.c.id).where(users.c.email == email)).scalar()
            if admin_id is None:
                admin_id = new_id()
                now = iso_utc(utcnow())
                conn.execute(
                    users.insert().values(
                        id=admin_id,
                        email=email,
                        password_hash=hash_password(admin_password, bcrypt_rounds),
                        full_name=admin_name.strip() or "Admin User",
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                )
                created = True
            insert_ignore(
                conn,
                user_roles,
                {
                    "user_id": admin_id,
                    "role_id": role_ids["ADMIN"],
                    "assigned_by": None,
                    "assigned_at": iso_utc(utcnow()),
                },
            )

    logger.info(
        "Auth seed complete (%d permissions, %d roles, admin_created=%s)",
        len(permission_ids),
        len(role_ids),
        created,
    )
    return SeedResult(
        admin_user_id=admin_id,
        admin_created=created,
        permission_count=len(permission_ids),
        role_count=len(role_ids),
    )
