"""Authentication endpoints.

POST /auth/login                     Exchange credentials for a session cookie.
GET  /auth/verify                    Return the current session's identity.
POST /auth/logout                    Clear the session cookie.
POST /auth/change-password           Change the caller's password.
POST /auth/reset-password/request    Email a reset link (generic answer).
POST /auth/reset-password/verify     Set a new password from a reset token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from ngo_backoffice.api.dependencies import (
    AdminDep,
    AuthServiceDep,
    ConfigDep,
    MetaDep,
    OptionalClaimsDep,
    RateLimited,
)
from ngo_backoffice.api.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetRequest,
    ResetVerifyRequest,
    UserView,
    VerifyResponse,
)
from ngo_backoffice.exceptions import AuthenticationError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Log in",
    dependencies=[Depends(RateLimited("auth"))],
)
async def login(
    body: LoginRequest,
    response: Response,
    auth: AuthServiceDep,
    config: ConfigDep,
    meta: MetaDep,
) -> LoginResponse:
    result = await auth.login(body.username, body.password, meta)
    security = config.security
    response.set_cookie(
        key=security.cookie_name,
        value=result.token,
        max_age=security.token_ttl_hours * 3600,
        httponly=True,
        secure=security.cookie_secure,
        samesite="strict",
        path="/",
    )
    return LoginResponse(user=UserView(**result.user_view()))


@router.get("/verify", response_model=VerifyResponse, summary="Check the current session")
async def verify(claims: OptionalClaimsDep) -> VerifyResponse:
    if claims is None:
        raise AuthenticationError()
    return VerifyResponse(user=UserView(**claims.public_view()))


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(
    response: Response,
    auth: AuthServiceDep,
    config: ConfigDep,
    meta: MetaDep,
    claims: OptionalClaimsDep,
) -> MessageResponse:
    auth.logout(claims, meta)
    response.delete_cookie(
        key=config.security.cookie_name,
        path="/",
        httponly=True,
        secure=config.security.cookie_secure,
        samesite="strict",
    )
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change the caller's password",
    dependencies=[Depends(RateLimited("write"))],
)
async def change_password(
    body: ChangePasswordRequest,
    auth: AuthServiceDep,
    claims: AdminDep,
    meta: MetaDep,
) -> MessageResponse:
    await auth.change_password(claims, body.current_password, body.new_password, meta)
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/reset-password/request",
    response_model=MessageResponse,
    summary="Request a password reset link",
    dependencies=[Depends(RateLimited("password_reset"))],
)
async def request_reset(body: ResetRequest, auth: AuthServiceDep, meta: MetaDep) -> MessageResponse:
    message = await auth.request_password_reset(body.email, meta)
    return MessageResponse(message=message)


@router.post(
    "/reset-password/verify",
    response_model=MessageResponse,
    summary="Complete a password reset",
    dependencies=[Depends(RateLimited("password_reset_verify"))],
)
async def complete_reset(
    body: ResetVerifyRequest, auth: AuthServiceDep, meta: MetaDep
) -> MessageResponse:
    await auth.complete_password_reset(body.token, body.new_password, meta)
    return MessageResponse(message="Password has been reset successfully")
