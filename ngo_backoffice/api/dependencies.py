"""API layer — FastAPI dependency injection.

All heavy objects (stores, gate, limiter, audit logger, services) are created
once at startup and injected via FastAPI's dependency system.

Privileged routes are guarded in this order:

    RateLimited(policy)  →  RequirePermission / RequireRole  →  handler

Rate limiting runs first so that unauthenticated floods are throttled too.
Every denial is reported to the audit logger before the error is raised.
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import Depends, Request

from ngo_backoffice.config import Settings
from ngo_backoffice.exceptions import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    ValidationError,
)
from ngo_backoffice.logging import bind_request_context
from ngo_backoffice.security.audit import AuditLogger
from ngo_backoffice.security.audit_records import (
    AuditAction,
    AuditActor,
    RequestMeta,
    client_ip,
)
from ngo_backoffice.security.events import SecurityEventAggregator
from ngo_backoffice.security.gate import AuthorizationGate
from ngo_backoffice.security.models import (
    Authenticated,
    AuthResult,
    Forbidden,
    Permission,
    Role,
    SessionClaims,
)
from ngo_backoffice.security.passwords import PasswordHasher
from ngo_backoffice.security.rate_limiter import FixedWindowRateLimiter, RateLimitPolicy
from ngo_backoffice.services.auth import AuthService
from ngo_backoffice.store.admins import AdminStore
from ngo_backoffice.store.documents import DocumentStore


def get_config(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit_logger  # type: ignore[no-any-return]


def get_gate(request: Request) -> AuthorizationGate:
    return request.app.state.gate  # type: ignore[no-any-return]


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter  # type: ignore[no-any-return]


def get_admin_store(request: Request) -> AdminStore:
    return request.app.state.admin_store  # type: ignore[no-any-return]


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store  # type: ignore[no-any-return]


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher  # type: ignore[no-any-return]


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service  # type: ignore[no-any-return]


def get_event_aggregator(request: Request) -> SecurityEventAggregator:
    return request.app.state.event_aggregator  # type: ignore[no-any-return]


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)


async def read_json_object(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object or raise ``ValidationError``."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimited:
    """Dependency that counts the request against a named policy.

    Usage::

        @router.post("/login", dependencies=[Depends(RateLimited("auth"))])
    """

    def __init__(self, policy: str) -> None:
        self.policy = policy

    async def __call__(self, request: Request) -> None:
        limiter = get_rate_limiter(request)
        policy: RateLimitPolicy = request.app.state.rate_limit_policies[self.policy]
        try:
            limiter.check_or_raise(client_ip(request), policy)
        except RateLimitError as exc:
            get_audit_logger(request).record_security_event(
                AuditAction.RATE_LIMIT_EXCEEDED,
                get_request_meta(request),
                resource=self.policy,
                error_message=exc.message,
                metadata={"policy": self.policy, "limit": exc.limit},
            )
            raise


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def _resolve(request: Request, result: AuthResult, resource: str) -> SessionClaims:
    """Turn a gate result into claims, or audit the denial and raise."""
    if isinstance(result, Authenticated):
        bind_request_context(admin_id=result.claims.user_id)
        return result.claims

    audit = get_audit_logger(request)
    meta = get_request_meta(request)
    if isinstance(result, Forbidden):
        audit.record_unauthorized(
            meta,
            resource,
            reason=f"Missing {result.kind}: {result.required}",
            actor=AuditActor.from_claims(result.claims),
        )
        raise AuthorizationError(required=result.required, kind=result.kind)

    audit.record_unauthorized(meta, resource, reason=result.reason)
    raise AuthenticationError()


def _resource_for(permission: Permission) -> str:
    name = permission.value
    for prefix in ("manage_", "view_"):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


class RequirePermission:
    """Dependency returning the caller's claims when they hold *permission*."""

    def __init__(self, permission: Permission, resource: str | None = None) -> None:
        self.permission = permission
        self.resource = resource or _resource_for(permission)

    async def __call__(self, request: Request) -> SessionClaims:
        result = get_gate(request).require_permission(request, self.permission)
        return _resolve(request, result, self.resource)


class RequireRole:
    """Dependency returning the caller's claims when they hold *role*."""

    def __init__(self, role: Role, resource: str) -> None:
        self.role = role
        self.resource = resource

    async def __call__(self, request: Request) -> SessionClaims:
        result = get_gate(request).require_role(request, self.role)
        return _resolve(request, result, self.resource)


async def require_admin(request: Request) -> SessionClaims:
    """Any authenticated administrator."""
    result = get_gate(request).require_authenticated(request)
    return _resolve(request, result, "auth")


async def optional_claims(request: Request) -> SessionClaims | None:
    """Claims when a valid session is present; never raises, never audits."""
    result = get_gate(request).require_authenticated(request)
    return result.claims if isinstance(result, Authenticated) else None


# Shorthand type aliases for route signatures.
ConfigDep = Annotated[Settings, Depends(get_config)]
AuditDep = Annotated[AuditLogger, Depends(get_audit_logger)]
GateDep = Annotated[AuthorizationGate, Depends(get_gate)]
AdminStoreDep = Annotated[AdminStore, Depends(get_admin_store)]
DocumentStoreDep = Annotated[DocumentStore, Depends(get_document_store)]
HasherDep = Annotated[PasswordHasher, Depends(get_password_hasher)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
AggregatorDep = Annotated[SecurityEventAggregator, Depends(get_event_aggregator)]
MetaDep = Annotated[RequestMeta, Depends(get_request_meta)]
AdminDep = Annotated[SessionClaims, Depends(require_admin)]
OptionalClaimsDep = Annotated[SessionClaims | None, Depends(optional_claims)]
