"""Security layer — Session tokens, authorization gate, rate limiting, audit trail."""

from ngo_backoffice.security.audit import AuditEvent, AuditLogger
from ngo_backoffice.security.audit_records import (
    AuditAction,
    AuditActor,
    AuditRecord,
    AuditStatus,
    RequestMeta,
    Severity,
)
from ngo_backoffice.security.events import SecurityEventAggregator
from ngo_backoffice.security.gate import AuthorizationGate
from ngo_backoffice.security.models import (
    Authenticated,
    Forbidden,
    Permission,
    Role,
    SessionClaims,
    Unauthenticated,
    has_permission,
)
from ngo_backoffice.security.passwords import PasswordHasher
from ngo_backoffice.security.rate_limiter import FixedWindowRateLimiter, RateLimitPolicy
from ngo_backoffice.security.tokens import TokenService

__all__ = [
    # Sessions
    "TokenService",
    "SessionClaims",
    "PasswordHasher",
    # Authorization
    "AuthorizationGate",
    "Authenticated",
    "Unauthenticated",
    "Forbidden",
    "Permission",
    "Role",
    "has_permission",
    # Rate limiting
    "FixedWindowRateLimiter",
    "RateLimitPolicy",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditRecord",
    "AuditAction",
    "AuditActor",
    "AuditStatus",
    "RequestMeta",
    "Severity",
    "SecurityEventAggregator",
]
