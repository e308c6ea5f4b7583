"""API layer — FastAPI application factory.

``create_app()`` is the single entry point for building the FastAPI app.
All services are wired here so that tests can build an app with their own
settings, clock and mailer.
"""

from __future__ import annotations

import time
from typing import Callable

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from ngo_backoffice import __version__
from ngo_backoffice.api.middleware import (
    AccessLogMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    build_error_handler,
    build_unhandled_error_handler,
    build_validation_handler,
)
from ngo_backoffice.api.routes import admins, audit_logs, auth, health, resources, security_events
from ngo_backoffice.config import RateLimitConfig, Settings, get_settings
from ngo_backoffice.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BackofficeError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from ngo_backoffice.logging import configure_logging, get_logger
from ngo_backoffice.security.audit import AuditLogger
from ngo_backoffice.security.events import SecurityEventAggregator
from ngo_backoffice.security.gate import AuthorizationGate
from ngo_backoffice.security.passwords import PasswordHasher
from ngo_backoffice.security.rate_limiter import FixedWindowRateLimiter, RateLimitPolicy
from ngo_backoffice.security.tokens import TokenService
from ngo_backoffice.services.auth import AuthService
from ngo_backoffice.services.mail import LogMailer, Mailer
from ngo_backoffice.store.admins import AdminStore
from ngo_backoffice.store.audit import AuditStore
from ngo_backoffice.store.documents import DocumentStore

log = get_logger(__name__)


def build_rate_limit_policies(cfg: RateLimitConfig) -> dict[str, RateLimitPolicy]:
    """One named policy per endpoint class.  Names also namespace the counters."""
    return {
        "auth": RateLimitPolicy("auth", cfg.auth.max_requests, cfg.auth.window_minutes),
        "password_reset": RateLimitPolicy(
            "password_reset", cfg.password_reset.max_requests, cfg.password_reset.window_minutes
        ),
        "password_reset_verify": RateLimitPolicy(
            "password_reset_verify", cfg.auth.max_requests, cfg.auth.window_minutes
        ),
        "write": RateLimitPolicy("write", cfg.write.max_requests, cfg.write.window_minutes),
        "read": RateLimitPolicy("read", cfg.read.max_requests, cfg.read.window_minutes),
    }


async def check_legacy_roles(admins: AdminStore, grace_days: int) -> int:
    """Log role-less administrator records.  Returns how many exist."""
    missing = await admins.count_missing_role()
    if not missing:
        return 0
    overdue = await admins.count_missing_role(created_before=time.time() - grace_days * 86_400)
    log.warning(
        "admins_missing_role",
        count=missing,
        past_grace_period=overdue,
        hint="They will be migrated at their next login.",
    )
    return missing


def create_app(
    settings: Settings | None = None,
    *,
    clock: Callable[[], float] | None = None,
    mailer: Mailer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override (used in tests).
        clock: Time source for session tokens and rate limiting (tests).
        mailer: Outbound mail implementation.  Defaults to ``LogMailer``.

    Returns:
        A fully configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()
    now = clock or time.time

    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    app = FastAPI(
        title="NGO Back Office",
        description="Administrative back office: sessions, permissions, rate limits and audit trail.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (order matters — outermost applied last)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    if settings.server.trusted_proxies:
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.server.trusted_proxies)

    # Exception handlers
    error_handler = build_error_handler()
    for exc_cls in (
        BackofficeError,
        AuthenticationError,
        AuthorizationError,
        RateLimitError,
        ValidationError,
        NotFoundError,
        ConflictError,
    ):
        app.add_exception_handler(exc_cls, error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, build_validation_handler())  # type: ignore[arg-type]
    app.add_exception_handler(Exception, build_unhandled_error_handler())

    # Routers
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(admins.router)
    app.include_router(audit_logs.router)
    app.include_router(security_events.router)
    for resource_router in resources.routers:
        app.include_router(resource_router)

    # Startup / shutdown lifecycle
    @app.on_event("startup")
    async def startup() -> None:
        log.info("backoffice_starting", version=__version__)

        admin_store = AdminStore(settings.database.path)
        await admin_store.init()
        document_store = DocumentStore(settings.database.path)
        await document_store.init()
        audit_store = AuditStore(settings.audit.db_path)
        await audit_store.init()
        purged = await audit_store.purge_expired()
        if purged:
            log.info("audit_records_purged", count=purged)

        audit_logger = AuditLogger(
            audit_store,
            queue_size=settings.audit.queue_size,
            retention_days=settings.audit.retention_days,
        )
        await audit_logger.start()

        security = settings.security
        tokens = TokenService.from_secret_or_random(
            security.session_secret, ttl_hours=security.token_ttl_hours, clock=now
        )
        rate_limiter = FixedWindowRateLimiter(clock=now)
        rate_limiter.start_sweeper(settings.rate_limits.sweep_interval_seconds)
        hasher = PasswordHasher(rounds=security.bcrypt_rounds)

        app.state.settings = settings
        app.state.admin_store = admin_store
        app.state.document_store = document_store
        app.state.audit_store = audit_store
        app.state.audit_logger = audit_logger
        app.state.token_service = tokens
        app.state.rate_limiter = rate_limiter
        app.state.rate_limit_policies = build_rate_limit_policies(settings.rate_limits)
        app.state.gate = AuthorizationGate(tokens, cookie_name=security.cookie_name)
        app.state.password_hasher = hasher
        app.state.auth_service = AuthService(
            admin_store, hasher, tokens, audit_logger, mailer or LogMailer(), security
        )
        app.state.event_aggregator = SecurityEventAggregator(
            audit_store, events_limit=settings.audit.security_events_limit
        )

        await check_legacy_roles(admin_store, security.legacy_role_grace_days)
        log.info("backoffice_started", host=settings.server.host, port=settings.server.port)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("backoffice_stopping")
        if hasattr(app.state, "rate_limiter"):
            await app.state.rate_limiter.stop_sweeper()
        if hasattr(app.state, "auth_service"):
            await app.state.auth_service.drain_mail()
        if hasattr(app.state, "audit_logger"):
            await app.state.audit_logger.stop()
        for name in ("audit_store", "document_store", "admin_store"):
            if hasattr(app.state, name):
                await getattr(app.state, name).close()

    return app
