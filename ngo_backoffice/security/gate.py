"""Security layer — Authorization gate.

The gate is the single decision point for every privileged request:

  1. read the session token from the admin cookie
  2. verify it with the :class:`TokenService`
  3. compare the claims against the required permission or role

It returns a tagged result (``Authenticated`` / ``Unauthenticated`` /
``Forbidden``) instead of raising, so each caller decides how to report the
outcome.  The API layer turns denials into 401/403 responses and audit
records (see ``api/dependencies.py``).

Anything missing or malformed in the claims is a denial.
"""

from __future__ import annotations

from starlette.requests import HTTPConnection

from ngo_backoffice.security.models import (
    Authenticated,
    AuthResult,
    Forbidden,
    Permission,
    Role,
    Unauthenticated,
    has_permission,
)
from ngo_backoffice.security.tokens import TokenService


class AuthorizationGate:
    """Resolves the caller's claims and decides allow / deny.

    Usage::

        gate = AuthorizationGate(tokens, cookie_name="admin_token")
        result = gate.require_permission(request, Permission.MANAGE_EVENTS)
        if isinstance(result, Authenticated):
            ...
    """

    def __init__(self, tokens: TokenService, cookie_name: str = "admin_token") -> None:
        self._tokens = tokens
        self._cookie_name = cookie_name

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def require_authenticated(self, request: HTTPConnection) -> Authenticated | Unauthenticated:
        token = request.cookies.get(self._cookie_name)
        if not token:
            return Unauthenticated(reason="missing_token")
        claims = self._tokens.verify(token)
        if claims is None:
            return Unauthenticated(reason="invalid_token")
        return Authenticated(claims)

    def require_permission(self, request: HTTPConnection, permission: Permission) -> AuthResult:
        result = self.require_authenticated(request)
        if isinstance(result, Unauthenticated):
            return result
        if not has_permission(result.claims, permission):
            return Forbidden(claims=result.claims, required=permission.value, kind="permission")
        return result

    def require_role(self, request: HTTPConnection, role: Role) -> AuthResult:
        result = self.require_authenticated(request)
        if isinstance(result, Unauthenticated):
            return result
        if result.claims.role is not role:
            return Forbidden(claims=result.claims, required=role.value, kind="role")
        return result
