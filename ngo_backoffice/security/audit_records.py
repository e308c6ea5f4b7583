"""Security layer — Audit record types.

  - ``AuditAction`` / ``Severity`` / ``ActorType`` / ``AuditStatus`` — enumerations
  - ``AuditActor``   — who performed the action (admin, anonymous visitor, system)
  - ``RequestMeta``  — request context captured with each record
  - ``AuditRecord``  — frozen, fully populated record as persisted
  - ``AuditFilters`` / ``AuditPage`` — read contract of the audit store

``sanitize_changes()`` strips credential material from change snapshots and
``classify_severity()`` assigns the default severity of a record.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from starlette.requests import Request

from ngo_backoffice.security.models import SessionClaims


class AuditAction(str, Enum):
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UPLOAD = "upload"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    BULK_OPERATION = "bulk_operation"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    API_ERROR = "api_error"
    FORM_SUBMISSION = "form_submission"
    SECURITY_EVENT = "security_event"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ActorType(str, Enum):
    ADMIN = "admin"
    USER = "user"
    SYSTEM = "system"
    ANONYMOUS = "anonymous"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# Actions shown on the security dashboard regardless of severity.
SECURITY_ACTIONS: tuple[AuditAction, ...] = (
    AuditAction.LOGIN,
    AuditAction.LOGIN_FAILED,
    AuditAction.LOGOUT,
    AuditAction.RATE_LIMIT_EXCEEDED,
    AuditAction.PASSWORD_CHANGE,
    AuditAction.UNAUTHORIZED_ACCESS,
    AuditAction.SECURITY_EVENT,
)

# Failures of these actions are at least warnings.
_SECURITY_SENSITIVE: frozenset[AuditAction] = frozenset(
    {
        AuditAction.LOGIN,
        AuditAction.LOGIN_FAILED,
        AuditAction.PASSWORD_CHANGE,
        AuditAction.PASSWORD_RESET_COMPLETE,
        AuditAction.UNAUTHORIZED_ACCESS,
        AuditAction.RATE_LIMIT_EXCEEDED,
        AuditAction.SECURITY_EVENT,
    }
)


def classify_severity(
    action: AuditAction,
    status: AuditStatus,
    explicit: Severity | None = None,
) -> Severity:
    if explicit is not None:
        return explicit
    if action is AuditAction.API_ERROR:
        return Severity.ERROR
    if status is AuditStatus.FAILURE and action in _SECURITY_SENSITIVE:
        return Severity.WARNING
    if action in (AuditAction.UNAUTHORIZED_ACCESS, AuditAction.RATE_LIMIT_EXCEEDED):
        return Severity.WARNING
    if action is AuditAction.DELETE:
        return Severity.WARNING
    return Severity.INFO


# ---------------------------------------------------------------------------
# Change snapshots
# ---------------------------------------------------------------------------

_SENSITIVE_FRAGMENTS = ("password", "passwd", "secret", "token", "apikey", "credential")


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace("_", "").replace("-", "")
    return normalized.endswith("hash") or any(f in normalized for f in _SENSITIVE_FRAGMENTS)


def _strip(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _strip(v) for k, v in value.items() if not _is_sensitive_key(str(k))
        }
    if isinstance(value, (list, tuple)):
        return [_strip(v) for v in value]
    return value


def sanitize_changes(changes: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return ``{"before", "after"}`` with every credential-like key removed."""
    if not changes:
        return None
    return {
        "before": _strip(changes.get("before")),
        "after": _strip(changes.get("after")),
    }


def snapshot(document: dict[str, Any] | None, fields: Iterable[str]) -> dict[str, Any] | None:
    """Pick only *fields* from *document* for a change snapshot."""
    if document is None:
        return None
    return {f: document[f] for f in fields if f in document}


# ---------------------------------------------------------------------------
# Actor and request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditActor:
    id: str
    email: str
    type: ActorType = ActorType.ADMIN

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "AuditActor":
        return cls(id=claims.user_id, email=claims.email, type=ActorType.ADMIN)


SYSTEM_ACTOR = AuditActor(id="system", email="system", type=ActorType.SYSTEM)
ANONYMOUS_ACTOR = AuditActor(id="anonymous", email="anonymous", type=ActorType.ANONYMOUS)


def client_ip(request: Request) -> str:
    """Peer address of the request.

    Forwarded headers are never read here; ``ProxyHeadersMiddleware`` rewrites
    the peer address for configured trusted proxies only.
    """
    return request.client.host if request.client else "unknown"


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str = "unknown"
    user_agent: str | None = None
    path: str | None = None
    request_id: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return cls(
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            path=path,
            request_id=getattr(request.state, "request_id", None),
        )


# ---------------------------------------------------------------------------
# Persisted record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit entry.  Never updated or partially filled."""

    action: AuditAction
    resource: str
    actor_id: str
    actor_email: str
    actor_type: ActorType
    status: AuditStatus
    severity: Severity
    ip_address: str
    timestamp: float
    expires_at: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    resource_id: str | None = None
    user_agent: str | None = None
    path: str | None = None
    request_id: str | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "admin_id": self.actor_id,
            "admin_email": self.actor_email,
            "actor_type": self.actor_type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "location": self.path,
            "request_id": self.request_id,
            "changes": self.changes,
            "metadata": self.metadata,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class AuditFilters:
    admin_id: str | None = None
    resource: str | None = None
    resource_id: str | None = None
    action: str | None = None
    start: float | None = None
    end: float | None = None


@dataclass(frozen=True)
class AuditPage:
    records: list[AuditRecord]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "logs": [r.to_dict() for r in self.records],
            "total": self.total,
            "page": self.page,
            "totalPages": self.total_pages,
        }
