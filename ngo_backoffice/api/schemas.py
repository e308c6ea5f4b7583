"""API layer — Request and response schemas.

Credential fields are optional at the schema level so that missing values
reach the service layer, which audits the attempt before rejecting it.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """POST /auth/login"""

    username: str | None = None
    password: str | None = None


class ChangePasswordRequest(BaseModel):
    """POST /auth/change-password"""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str | None = Field(default=None, alias="currentPassword")
    new_password: str | None = Field(default=None, alias="newPassword")


class ResetRequest(BaseModel):
    """POST /auth/reset-password/request"""

    email: str | None = None


class ResetVerifyRequest(BaseModel):
    """POST /auth/reset-password/verify"""

    model_config = ConfigDict(populate_by_name=True)

    token: str | None = None
    new_password: str | None = Field(default=None, alias="newPassword")


class AdminCreateRequest(BaseModel):
    """POST /admin/admins"""

    username: str | None = None
    email: str | None = None
    password: str | None = None
    role: str | None = None
    permissions: list[str] | None = None


class AdminUpdateRequest(BaseModel):
    """PUT /admin/admins/{admin_id}"""

    username: str | None = None
    email: str | None = None
    is_active: bool | None = None


class PermissionsUpdateRequest(BaseModel):
    """PUT /admin/admins/{admin_id}/permissions"""

    role: str | None = None
    permissions: list[str] | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    id: str
    username: str
    email: str
    role: str | None = None
    permissions: list[str] = Field(default_factory=list)


class LoginResponse(BaseModel):
    success: bool = True
    user: UserView


class VerifyResponse(BaseModel):
    authenticated: bool = True
    user: UserView


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    uptime_seconds: float
    audit: dict[str, int]


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: Any = None
    request_id: str | None = None
