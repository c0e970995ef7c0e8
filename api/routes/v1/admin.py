"""
api/routes/v1/admin.py -- RBAC administration endpoints.

Every route is permission-gated through auth.dependencies; mutating routes
also run enforce_same_origin as a route-level dependency, so a cross-origin
POST/PATCH is rejected before the session is even looked up.

Routes:
  GET   /api/v1/admin/users             admin:users:read
  POST  /api/v1/admin/users             admin:users:manage
  PATCH /api/v1/admin/users/{id}        admin:users:manage
  GET   /api/v1/admin/roles             admin:roles:read
  POST  /api/v1/admin/roles             admin:roles:manage
  PATCH /api/v1/admin/roles/{id}        admin:roles:manage
  GET   /api/v1/admin/permissions       admin:permissions:read
  POST  /api/v1/admin/role-assign       admin:users:manage
  POST  /api/v1/admin/role-permissions  admin:roles:manage
  GET   /api/v1/admin/audit-logs        admin:audit:read

Holders of admin:all (or the ADMIN role) pass every permission check.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    AuditLogListResponse,
    AuditLogResponse,
    CreatedResponse,
    OkResponse,
    PermissionListResponse,
    PermissionResponse,
    RoleAssignRequest,
    RoleCreate,
    RoleListResponse,
    RolePatch,
    RolePermissionsRequest,
    RoleResponse,
    UserCreate,
    UserListResponse,
    UserPatch,
    UserResponse,
)
from auth.dependencies import enforce_same_origin, require_permissions
from auth.guard import get_client_ip
from auth.models import AuthorizationContext
from auth.service import Actor, AdminService, ConflictError, NotFoundError
from auth.tokens import hash_password

logger = logging.getLogger("stockshunter.api.admin")

router = APIRouter(prefix="/admin")

_same_origin = [Depends(enforce_same_origin)]


def _service(request: Request) -> AdminService:
    return request.app.state.admin


def _actor(request: Request, context: AuthorizationContext) -> Actor:
    return Actor(user_id=context.user.id, ip_address=get_client_ip(request))


def _conflict(exc: ConflictError) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": "conflict", "message": exc.message})


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": exc.message})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    context: AuthorizationContext = Depends(require_permissions("admin:users:read")),
) -> UserListResponse:
    """All users with their role names, newest first."""
    return UserListResponse(users=[UserResponse.from_user(u) for u in _service(request).list_users()])


@router.post("/users", status_code=201, response_model=CreatedResponse, dependencies=_same_origin)
def create_user(
    request: Request,
    body: UserCreate,
    context: AuthorizationContext = Depends(require_permissions("admin:users:manage")),
) -> CreatedResponse:
    try:
        user_id = _service(request).create_user(
            _actor(request, context),
            email=body.email,
            full_name=body.full_name,
            password_hash=hash_password(body.password),
            is_active=body.is_active,
        )
    except ConflictError as exc:
        raise _conflict(exc) from exc
    logger.info("User %s created by %s", user_id, context.user.id)
    return CreatedResponse(id=user_id)


@router.patch("/users/{user_id}", response_model=OkResponse, dependencies=_same_origin)
def update_user(
    request: Request,
    user_id: UUID,
    body: UserPatch,
    context: AuthorizationContext = Depends(require_permissions("admin:users:manage")),
) -> OkResponse:
    """Partial update. Deactivating a user or setting a new password signs them out everywhere."""
    try:
        result = _service(request).update_user(
            _actor(request, context),
            str(user_id),
            full_name=body.full_name,
            is_active=body.is_active,
            password_hash=hash_password(body.password) if body.password is not None else None,
        )
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    if result.sessions_revoked:
        logger.info("Sessions revoked for user %s by %s", user_id, context.user.id)
    return OkResponse()


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=RoleListResponse)
def list_roles(
    request: Request,
    context: AuthorizationContext = Depends(require_permissions("admin:roles:read")),
) -> RoleListResponse:
    return RoleListResponse(roles=[RoleResponse.from_role(r) for r in _service(request).list_roles()])


@router.post("/roles", status_code=201, response_model=CreatedResponse, dependencies=_same_origin)
def create_role(
    request: Request,
    body: RoleCreate,
    context: AuthorizationContext = Depends(require_permissions("admin:roles:manage")),
) -> CreatedResponse:
    try:
        role_id = _service(request).create_role(
            _actor(request, context), name=body.name, description=body.description
        )
    except ConflictError as exc:
        raise _conflict(exc) from exc
    return CreatedResponse(id=role_id)


@router.patch("/roles/{role_id}", response_model=OkResponse, dependencies=_same_origin)
def update_role(
    request: Request,
    role_id: UUID,
    body: RolePatch,
    context: AuthorizationContext = Depends(require_permissions("admin:roles:manage")),
) -> OkResponse:
    try:
        _service(request).update_role(
            _actor(request, context), str(role_id), name=body.name, description=body.description
        )
    except ConflictError as exc:
        raise _conflict(exc) from exc
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return OkResponse()


# ---------------------------------------------------------------------------
# Permissions and mappings
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=PermissionListResponse)
def list_permissions(
    request: Request,
    context: AuthorizationContext = Depends(require_permissions("admin:permissions:read")),
) -> PermissionListResponse:
    return PermissionListResponse(
        permissions=[PermissionResponse.from_permission(p) for p in _service(request).list_permissions()]
    )


@router.post("/role-assign", response_model=OkResponse, dependencies=_same_origin)
def assign_role(
    request: Request,
    body: RoleAssignRequest,
    context: AuthorizationContext = Depends(require_permissions("admin:users:manage")),
) -> OkResponse:
    """Grant a role to a user. Idempotent."""
    try:
        _service(request).assign_role_to_user(
            _actor(request, context), user_id=str(body.user_id), role_id=str(body.role_id)
        )
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return OkResponse()


@router.post("/role-permissions", response_model=OkResponse, dependencies=_same_origin)
def set_role_permissions(
    request: Request,
    body: RolePermissionsRequest,
    context: AuthorizationContext = Depends(require_permissions("admin:roles:manage")),
) -> OkResponse:
    """Replace the role's permission set with exactly the submitted ids."""
    try:
        _service(request).set_role_permissions(
            _actor(request, context),
            role_id=str(body.role_id),
            permission_ids=[str(p) for p in body.permission_ids],
        )
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return OkResponse()


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    request: Request,
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = Query(default=None),
    actor: Optional[UUID] = Query(default=None),
    action: Optional[str] = Query(default=None, max_length=80),
    context: AuthorizationContext = Depends(require_permissions("admin:audit:read")),
) -> AuditLogListResponse:
    entries = _service(request).list_audit_logs(
        from_=from_,
        to=to,
        actor=str(actor) if actor is not None else None,
        action=action,
    )
    return AuditLogListResponse(logs=[AuditLogResponse.from_entry(e) for e in entries])
