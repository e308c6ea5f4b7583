"""Administrator management endpoints.

GET    /admin/admins                         List accounts + role catalogue.
POST   /admin/admins                         Create an account.
GET    /admin/admins/{admin_id}              Fetch one account with recent activity.
PUT    /admin/admins/{admin_id}              Update username / email / is_active.
PUT    /admin/admins/{admin_id}/permissions  Change role and permissions.
DELETE /admin/admins/{admin_id}              Deactivate an account.

Reads need ``manage_admins``.  Every mutation is reserved to the
``super_admin`` role; the permissions route also needs ``manage_roles``.

Credential material never leaves this module: responses use
``Administrator.public_dict()`` and audit snapshots use
``Administrator.audit_snapshot()``.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from ngo_backoffice.api.dependencies import (
    AdminStoreDep,
    AuditDep,
    ConfigDep,
    HasherDep,
    MetaDep,
    RateLimited,
    RequirePermission,
    RequireRole,
)
from ngo_backoffice.api.schemas import (
    AdminCreateRequest,
    AdminUpdateRequest,
    PermissionsUpdateRequest,
)
from ngo_backoffice.exceptions import ValidationError
from ngo_backoffice.security.audit_records import AuditAction, AuditActor
from ngo_backoffice.security.models import (
    ALL_PERMISSIONS,
    DEFAULT_PERMISSIONS,
    Permission,
    Role,
    SessionClaims,
    default_permissions_for,
    parse_permissions,
)
from ngo_backoffice.security.passwords import validate_email, validate_password

router = APIRouter(prefix="/admin/admins", tags=["admins"])

ManageAdmins = Annotated[
    SessionClaims, Depends(RequirePermission(Permission.MANAGE_ADMINS, "admin"))
]
SuperAdmin = Annotated[SessionClaims, Depends(RequireRole(Role.SUPER_ADMIN, "admin"))]
ManageRoles = Depends(RequirePermission(Permission.MANAGE_ROLES, "admin"))


def _parse_role(value: str | None) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValidationError.for_field(
            "role", f"Role must be one of: {', '.join(r.value for r in Role)}"
        ) from exc


def _parse_permissions(values: list[str] | None, role: Role) -> list[str]:
    if values is None:
        return default_permissions_for(role)
    try:
        return [p.value for p in parse_permissions(values)]
    except ValueError as exc:
        raise ValidationError.for_field("permissions", "Unknown permission") from exc


def _check_username(value: str | None, max_length: int) -> str:
    if not value or not value.strip():
        raise ValidationError.for_field("username", "Username is required")
    if len(value.strip()) > max_length:
        raise ValidationError.for_field("username", "Username is too long")
    return value.strip()


@router.get("", dependencies=[Depends(RateLimited("read"))])
async def list_admins(claims: ManageAdmins, admins: AdminStoreDep) -> dict[str, Any]:
    accounts = await admins.list_all()
    return {
        "admins": [a.public_dict() for a in accounts],
        "roles": [r.value for r in Role],
        "allPermissions": [p.value for p in ALL_PERMISSIONS],
        "defaultPermissions": {
            role.value: [p.value for p in perms] for role, perms in DEFAULT_PERMISSIONS.items()
        },
    }


@router.post("", status_code=201, dependencies=[Depends(RateLimited("write"))])
async def create_admin(
    body: AdminCreateRequest,
    claims: SuperAdmin,
    admins: AdminStoreDep,
    hasher: HasherDep,
    audit: AuditDep,
    config: ConfigDep,
    meta: MetaDep,
) -> dict[str, Any]:
    security = config.security
    async with audit.track(
        AuditAction.CREATE, "admin", actor=AuditActor.from_claims(claims), meta=meta
    ) as entry:
        username = _check_username(body.username, security.username_max_length)
        email = validate_email(body.email)
        password = validate_password(
            body.password,
            min_length=security.password_min_length,
            max_length=security.password_max_length,
        )
        role = _parse_role(body.role or Role.ADMIN.value)
        permissions = _parse_permissions(body.permissions, role)

        admin = await admins.create(
            username=username,
            email=email,
            password_hash=await hasher.hash_async(password),
            role=role,
            permissions=permissions,
            created_by=claims.user_id,
        )
        entry.resource_id = admin.id
        entry.set_changes(after=admin.audit_snapshot())
    return {"success": True, "admin": admin.public_dict()}


@router.get("/{admin_id}", dependencies=[Depends(RateLimited("read"))])
async def get_admin(
    admin_id: str, claims: ManageAdmins, admins: AdminStoreDep, audit: AuditDep
) -> dict[str, Any]:
    admin = await admins.require(admin_id)
    recent = await audit.admin_activity(admin_id, limit=10)
    return {"admin": admin.public_dict(), "recentActivity": [r.to_dict() for r in recent]}


@router.put("/{admin_id}", dependencies=[Depends(RateLimited("write"))])
async def update_admin(
    admin_id: str,
    body: AdminUpdateRequest,
    claims: SuperAdmin,
    admins: AdminStoreDep,
    audit: AuditDep,
    config: ConfigDep,
    meta: MetaDep,
) -> dict[str, Any]:
    async with audit.track(
        AuditAction.UPDATE,
        "admin",
        actor=AuditActor.from_claims(claims),
        meta=meta,
        resource_id=admin_id,
    ) as entry:
        before = await admins.require(admin_id)
        fields: dict[str, Any] = {}
        if body.username is not None:
            fields["username"] = _check_username(body.username, config.security.username_max_length)
        if body.email is not None:
            fields["email"] = validate_email(body.email)
        if body.is_active is not None:
            if not body.is_active and admin_id == claims.user_id:
                raise ValidationError.for_field("is_active", "You cannot deactivate your own account")
            fields["is_active"] = body.is_active
        after = await admins.update(admin_id, **fields)
        entry.set_changes(before=before.audit_snapshot(), after=after.audit_snapshot())
    return {"success": True, "admin": after.public_dict()}


@router.put("/{admin_id}/permissions", dependencies=[Depends(RateLimited("write")), ManageRoles])
async def update_permissions(
    admin_id: str,
    body: PermissionsUpdateRequest,
    claims: SuperAdmin,
    admins: AdminStoreDep,
    audit: AuditDep,
    meta: MetaDep,
) -> dict[str, Any]:
    async with audit.track(
        AuditAction.UPDATE,
        "admin",
        actor=AuditActor.from_claims(claims),
        meta=meta,
        resource_id=admin_id,
    ) as entry:
        entry.metadata["operation"] = "permissions"
        before = await admins.require(admin_id)
        role = _parse_role(body.role) if body.role is not None else (before.role or Role.ADMIN)
        if admin_id == claims.user_id and role is not Role.SUPER_ADMIN:
            raise ValidationError.for_field("role", "You cannot remove your own super admin role")
        permissions = _parse_permissions(body.permissions, role)
        after = await admins.update(admin_id, role=role, permissions=permissions)
        entry.set_changes(before=before.audit_snapshot(), after=after.audit_snapshot())
    return {"success": True, "admin": after.public_dict()}


@router.delete("/{admin_id}", dependencies=[Depends(RateLimited("write"))])
async def deactivate_admin(
    admin_id: str,
    claims: SuperAdmin,
    admins: AdminStoreDep,
    audit: AuditDep,
    meta: MetaDep,
) -> dict[str, Any]:
    async with audit.track(
        AuditAction.DELETE,
        "admin",
        actor=AuditActor.from_claims(claims),
        meta=meta,
        resource_id=admin_id,
    ) as entry:
        entry.metadata["operation"] = "deactivate"
        if admin_id == claims.user_id:
            raise ValidationError("You cannot deactivate your own account")
        before = await admins.require(admin_id)
        after = await admins.update(admin_id, is_active=False)
        entry.set_changes(before=before.audit_snapshot(), after=after.audit_snapshot())
    return {"success": True, "message": "Administrator deactivated"}
