"""Security layer — Roles, permissions, session claims and gate results.

Defines the access-control core types:
  - ``Role``                — administrator role (super_admin / coordinator / treasurer / admin)
  - ``Permission``          — fixed enumeration of capability names
  - ``DEFAULT_PERMISSIONS`` — default permission set for each role
  - ``SessionClaims``       — identity payload sealed inside a session token
  - ``Authenticated`` / ``Unauthenticated`` / ``Forbidden`` — tagged gate results

``has_permission()`` is the only place where the super-admin bypass lives.
Every permission decision in the code base goes through it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    COORDINATOR = "coordinator"
    TREASURER = "treasurer"
    ADMIN = "admin"


class Permission(str, Enum):
    MANAGE_ADMINS = "manage_admins"
    MANAGE_ROLES = "manage_roles"
    MANAGE_EVENTS = "manage_events"
    MANAGE_VOLUNTEERS = "manage_volunteers"
    MANAGE_TEAM = "manage_team"
    MANAGE_CONTENT = "manage_content"
    MANAGE_EMPOWERMENTS = "manage_empowerments"
    MANAGE_TAGS = "manage_tags"
    MANAGE_CONTACTS = "manage_contacts"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_PAGE_IMAGES = "manage_page_images"
    MANAGE_GALLERY = "manage_gallery"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_UPLOADS = "manage_uploads"


ALL_PERMISSIONS: tuple[Permission, ...] = tuple(Permission)

DEFAULT_PERMISSIONS: dict[Role, tuple[Permission, ...]] = {
    Role.SUPER_ADMIN: ALL_PERMISSIONS,
    Role.COORDINATOR: (
        Permission.MANAGE_EVENTS,
        Permission.MANAGE_VOLUNTEERS,
        Permission.MANAGE_TEAM,
        Permission.MANAGE_CONTENT,
        Permission.MANAGE_EMPOWERMENTS,
        Permission.MANAGE_TAGS,
        Permission.MANAGE_CONTACTS,
        Permission.MANAGE_PAGE_IMAGES,
        Permission.MANAGE_GALLERY,
        Permission.MANAGE_UPLOADS,
    ),
    Role.TREASURER: (
        Permission.MANAGE_EVENTS,
        Permission.MANAGE_CONTACTS,
        Permission.VIEW_AUDIT_LOGS,
    ),
    Role.ADMIN: (
        Permission.MANAGE_EVENTS,
        Permission.MANAGE_VOLUNTEERS,
        Permission.MANAGE_CONTENT,
        Permission.MANAGE_EMPOWERMENTS,
        Permission.MANAGE_TAGS,
        Permission.MANAGE_CONTACTS,
        Permission.MANAGE_GALLERY,
        Permission.MANAGE_UPLOADS,
    ),
}


def default_permissions_for(role: Role) -> list[str]:
    return [p.value for p in DEFAULT_PERMISSIONS[role]]


def parse_permissions(values: list[str]) -> list[Permission]:
    """Convert permission strings, raising ``ValueError`` on unknown names."""
    return [Permission(v) for v in values]


# ---------------------------------------------------------------------------
# Session claims
# ---------------------------------------------------------------------------


class SessionClaims(BaseModel):
    """Identity payload carried by a session token.

    ``role`` is optional so that tokens minted before roles existed still
    parse; the gate treats a missing role as "no permissions".
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    email: str
    role: Role | None = None
    permissions: tuple[str, ...] = ()
    issued_at: float = Field(default_factory=time.time)
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "permissions": list(self.permissions),
        }


def has_permission(claims: SessionClaims, permission: Permission) -> bool:
    """Return True when *claims* grant *permission*.

    Super admins hold every permission regardless of the stored set.  A
    missing role fails closed.
    """
    if claims.role is None:
        return False
    if claims.role is Role.SUPER_ADMIN:
        return True
    return permission.value in claims.permissions


# ---------------------------------------------------------------------------
# Gate results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Authenticated:
    claims: SessionClaims


@dataclass(frozen=True)
class Unauthenticated:
    reason: str = "missing_token"


@dataclass(frozen=True)
class Forbidden:
    claims: SessionClaims
    required: str
    kind: str = "permission"


AuthResult = Authenticated | Unauthenticated | Forbidden
