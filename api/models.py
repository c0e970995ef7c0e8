"""
API request and response models for the auth and admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

import re
from typing import Annotated, Any, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from auth.models import AuditLogEntry, AuthorizationContext, Permission, Role, User
from auth.tokens import is_valid_email

# ---------------------------------------------------------------------------
# Credential rules
# ---------------------------------------------------------------------------

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")


def is_strong_password(password: str) -> bool:
    """Upper-case, lower-case, digit, and symbol all present."""
    return all(p.search(password) for p in (_UPPER, _LOWER, _DIGIT, _SYMBOL))


def _check_strength(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_strong_password(value):
        raise PydanticCustomError(
            "weak_password",
            "Password must include uppercase, lowercase, number, and special character.",
        )
    return value


def _check_email(value: str) -> str:
    if not is_valid_email(value):
        raise PydanticCustomError("email", "Invalid email address.")
    return value.strip()


AccountEmail = Annotated[str, AfterValidator(_check_email)]


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool = True


class CreatedResponse(BaseModel):
    id: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body of POST /auth/login. Any violation is reported as "Invalid credentials."."""

    email: AccountEmail
    password: str = Field(min_length=8, max_length=128)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class LoginUser(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None


class LoginResponse(BaseModel):
    ok: bool = True
    user: LoginUser


class MeUser(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    is_active: bool
    roles: list[str]
    permissions: list[str]


class MeSession(BaseModel):
    id: str
    expires_at: str


class MeResponse(BaseModel):
    user: MeUser
    session: MeSession

    @classmethod
    def build(cls, context: AuthorizationContext, session_id: str, expires_at: str) -> "MeResponse":
        """Identity from the context that authenticated the call; session from the rotation."""
        return cls(
            user=MeUser(
                id=context.user.id,
                email=context.user.email,
                full_name=context.user.full_name,
                is_active=context.user.is_active,
                roles=list(context.roles),
                permissions=list(context.permissions),
            ),
            session=MeSession(id=session_id, expires_at=expires_at),
        )


# ---------------------------------------------------------------------------
# Admin -- requests
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Body of POST /admin/users. Email is normalized by the service."""

    model_config = ConfigDict(populate_by_name=True)

    email: AccountEmail
    password: str = Field(min_length=10, max_length=128)
    full_name: str = Field(min_length=1, max_length=180, alias="fullName")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        return _check_strength(value)


class UserPatch(BaseModel):
    """Body of PATCH /admin/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=180, alias="fullName")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    password: Optional[str] = Field(default=None, min_length=10, max_length=128)

    @field_validator("password", mode="before")
    @classmethod
    def empty_password_is_no_change(cls, value):
        return None if value == "" else value

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        return _check_strength(value)


class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=80)
    description: Optional[str] = Field(default=None, max_length=280)


class RolePatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=80)
    description: Optional[str] = Field(default=None, max_length=280)


class RoleAssignRequest(BaseModel):
    user_id: UUID
    role_id: UUID


class RolePermissionsRequest(BaseModel):
    """Full replacement set -- permissions not listed are removed from the role."""

    role_id: UUID
    permission_ids: list[UUID] = Field(max_length=250)


# ---------------------------------------------------------------------------
# Admin -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    id: str
    email: str
    full_name: Optional[str]
    is_active: bool
    last_login_at: Optional[str]
    created_at: str
    updated_at: str
    roles: list[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            is_active=user.is_active,
            last_login_at=user.last_login_at,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
            roles=list(user.roles),
        )


class UserListResponse(BaseModel):
    users: list[UserResponse]


class RoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    created_at: str
    permissions: list[str]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            created_at=role.created_at or "",
            permissions=list(role.permissions),
        )


class RoleListResponse(BaseModel):
    roles: list[RoleResponse]


class PermissionResponse(BaseModel):
    id: str
    key: str
    description: Optional[str]

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, key=permission.key, description=permission.description)


class PermissionListResponse(BaseModel):
    permissions: list[PermissionResponse]


class AuditLogResponse(BaseModel):
    id: str
    actor_user_id: Optional[str]
    actor_email: Optional[str]
    action: str
    entity_type: str
    entity_id: Optional[str]
    metadata: dict[str, Any]
    created_at: str
    ip_address: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            actor_user_id=entry.actor_user_id,
            actor_email=entry.actor_email,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            metadata=entry.metadata,
            created_at=entry.created_at or "",
            ip_address=entry.ip_address,
        )


class AuditLogListResponse(BaseModel):
    logs: list[AuditLogResponse]
