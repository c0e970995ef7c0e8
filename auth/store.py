"""
auth/store.py -- SQLAlchemy Core persistence for users, roles, and permissions.

Pattern: Repository + Data Mapper. AuthStore is the repository; _row_to_user /
_row_to_role / _row_to_permission are the mappers. Route and service code
never touches SQL directly.

The store performs no authorization. Callers (the admin routes) check
permissions through auth/dependencies.py before anything here runs.

Constraint violations surface as sqlalchemy.exc.IntegrityError; AdminService
in auth/service.py turns the unique-key cases into ConflictError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine

from auth.models import Permission, Role, User
from auth.schema import (
    insert_ignore,
    iso_utc,
    new_id,
    permissions,
    role_permissions,
    roles,
    user_roles,
    users,
    utcnow,
)


class AuthStore:
    """Repository for User, Role, Permission and their mapping rows.

    Usage:
        store = AuthStore(engine)
        uid = store.create_user(User(email="a@b.com", password_hash=hash_password("...")))
        user = store.get_user_by_email("a@b.com")
    """

    # Column whitelists for partial updates -- never build SET clauses from raw input.
    _USER_FIELDS: frozenset = frozenset({"full_name", "is_active", "password_hash"})
    _ROLE_FIELDS: frozenset = frozenset({"name", "description"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(users)).scalar()
        return (count or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The email must already be normalized.
        """
        user_id = new_id()
        now = iso_utc(utcnow())
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email,
                    password_hash=user.password_hash,
                    full_name=user.full_name,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_user_by_email(self, email: str) -> User | None:
        """Exact match on the normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users_with_roles(self) -> list[User]:
        """All users, newest first, each with the names of their assigned roles."""
        stmt = (
            select(users, roles.c.name.label("role_name"))
            .select_from(
                users.outerjoin(user_roles, user_roles.c.user_id == users.c.id).outerjoin(
                    roles, roles.c.id == user_roles.c.role_id
                )
            )
            .order_by(users.c.created_at.desc(), roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        by_id: dict[str, User] = {}
        for row in rows:
            user = by_id.get(row.id)
            if user is None:
                user = by_id[row.id] = _row_to_user(row)
            if row.role_name is not None and row.role_name not in user.roles:
                user.roles.append(row.role_name)
        return list(by_id.values())

    def update_user(self, user_id: str, **fields) -> bool:
        """Partially update a user. Accepted fields: full_name, is_active, password_hash.

        Returns True if the row exists. Unknown field names raise ValueError.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                update(users).where(users.c.id == user_id).values(updated_at=iso_utc(utcnow()), **fields)
            )
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        now = iso_utc(utcnow())
        with self.engine.begin() as conn:
            conn.execute(update(users).where(users.c.id == user_id).values(last_login_at=now, updated_at=now))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> str:
        """Insert a role and return its id. Raises IntegrityError on a duplicate name."""
        role_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                roles.insert().values(
                    id=role_id,
                    name=role.name,
                    description=role.description,
                    created_at=iso_utc(utcnow()),
                )
            )
        return role_id

    def get_role(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def update_role(self, role_id: str, **fields) -> bool:
        """Partially update a role. Accepted fields: name, description.

        Returns True if the row exists. Raises IntegrityError on a duplicate name.
        """
        unknown = set(fields) - self._ROLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        if not fields:
            return self.get_role(role_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(update(roles).where(roles.c.id == role_id).values(**fields))
        return result.rowcount > 0

    def list_roles_with_permissions(self) -> list[Role]:
        """All roles by name, each with its permission keys."""
        stmt = (
            select(roles, permissions.c.key.label("permission_key"))
            .select_from(
                roles.outerjoin(role_permissions, role_permissions.c.role_id == roles.c.id).outerjoin(
                    permissions, permissions.c.id == role_permissions.c.permission_id
                )
            )
            .order_by(roles.c.name, permissions.c.key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        by_id: dict[str, Role] = {}
        for row in rows:
            role = by_id.get(row.id)
            if role is None:
                role = by_id[row.id] = _row_to_role(row)
            if row.permission_key is not None and row.permission_key not in role.permissions:
                role.permissions.append(row.permission_key)
        return list(by_id.values())

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(permissions.select().order_by(permissions.c.key)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_permission_by_key(self, key: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.key == key)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def create_permission(self, permission: Permission) -> str:
        """Insert a permission and return its id. Raises IntegrityError on a duplicate key."""
        permission_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                permissions.insert().values(
                    id=permission_id,
                    key=permission.key,
                    description=permission.description,
                    created_at=iso_utc(utcnow()),
                )
            )
        return permission_id

    def missing_permission_ids(self, permission_ids: Iterable[str]) -> list[str]:
        """Return the ids in permission_ids that have no permissions row."""
        wanted = list(dict.fromkeys(permission_ids))
        if not wanted:
            return []
        with self.engine.connect() as conn:
            found = set(conn.execute(select(permissions.c.id).where(permissions.c.id.in_(wanted))).scalars())
        return [pid for pid in wanted if pid not in found]

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def assign_role_to_user(self, user_id: str, role_id: str, assigned_by: Optional[str]) -> None:
        """Idempotent: assigning a role the user already holds is a no-op."""
        with self.engine.begin() as conn:
            insert_ignore(
                conn,
                user_roles,
                {
                    "user_id": user_id,
                    "role_id": role_id,
                    "assigned_by": assigned_by,
                    "assigned_at": iso_utc(utcnow()),
                },
            )

    def get_user_role_names(self, user_id: str) -> list[str]:
        stmt = (
            select(roles.c.name)
            .select_from(user_roles.join(roles, roles.c.id == user_roles.c.role_id))
            .where(user_roles.c.user_id == user_id)
            .order_by(roles.c.name)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    def set_role_permissions(self, role_id: str, permission_ids: Iterable[str]) -> None:
        """Replace a role's permission set with exactly permission_ids.

        Delete and insert run in one transaction, so concurrent readers never
        observe the role with an empty permission set and a failed insert
        leaves the previous set intact.
        """
        unique_ids = list(dict.fromkeys(permission_ids))
        with self.engine.begin() as conn:
            conn.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
            for permission_id in unique_ids:
                insert_ignore(conn, role_permissions, {"role_id": role_id, "permission_id": permission_id})

    def get_role_permission_keys(self, role_id: str) -> list[str]:
        stmt = (
            select(permissions.c.key)
            .select_from(role_permissions.join(permissions, permissions.c.id == role_permissions.c.permission_id))
            .where(role_permissions.c.role_id == role_id)
            .order_by(permissions.c.key)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name,
        is_active=bool(row.is_active),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        key=row.key,
        description=row.description,
    )
