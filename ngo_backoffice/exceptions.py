"""NGO Back Office — Exception hierarchy.

All exceptions raised by the back office inherit from BackofficeError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    BackofficeError
    ├── SecurityError
    │   ├── AuthenticationError      → 401
    │   ├── AuthorizationError       → 403
    │   └── RateLimitError           → 429
    ├── ValidationError              → 400
    ├── NotFoundError                → 404
    ├── ConflictError                → 409
    └── StoreError
        └── PersistenceError         (audit writes — logged, never surfaced)
"""

from __future__ import annotations

import math
from typing import Any


class BackofficeError(Exception):
    """Base exception for all back office errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Security layer
# ---------------------------------------------------------------------------


class SecurityError(BackofficeError):
    """Base for all security-related errors."""


class AuthenticationError(SecurityError):
    """Missing, invalid or expired session.

    The message is deliberately generic: it never says which check failed.
    """

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class AuthorizationError(SecurityError):
    """Valid session, but the caller lacks the required role or permission."""

    def __init__(
        self,
        required: str,
        kind: str = "permission",
        message: str = "Forbidden",
    ) -> None:
        super().__init__(message, context={"required": required, "kind": kind})
        self.required = required
        self.kind = kind


class RateLimitError(SecurityError):
    """Too many requests from one identifier within a window."""

    def __init__(
        self,
        key: str,
        limit: int,
        retry_after_seconds: float,
        message: str = "Too many requests. Please try again later.",
    ) -> None:
        retry_after = max(1, math.ceil(retry_after_seconds))
        super().__init__(
            message,
            context={
                "limit": limit,
                "retry_after_seconds": retry_after,
                "retry_after_minutes": math.ceil(retry_after / 60),
            },
        )
        self.key = key
        self.limit = limit
        self.retry_after_seconds = retry_after


# ---------------------------------------------------------------------------
# Request / resource errors
# ---------------------------------------------------------------------------


class ValidationError(BackofficeError):
    """Malformed input.  ``errors`` carries field-level detail safe to expose."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, context={"errors": errors or []})
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])


class NotFoundError(BackofficeError):
    """The referenced resource does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource.replace('_', ' ').capitalize()} not found",
            context={"resource": resource, "resource_id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(BackofficeError):
    """A uniqueness constraint would be violated."""


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StoreError(BackofficeError):
    """Base for persistence errors."""


class PersistenceError(StoreError):
    """An audit record could not be written.

    Raised inside the audit worker only; it is logged and never propagated
    to the request that triggered the record.
    """
