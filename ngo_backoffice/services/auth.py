"""Services — Administrator authentication flows.

Every outcome here is audited exactly once:

  login                     LOGIN (success) / LOGIN_FAILED
  logout                    LOGOUT
  change_password           PASSWORD_CHANGE (success or failure)
  request_password_reset    PASSWORD_RESET_REQUEST (success or failure)
  complete_password_reset   PASSWORD_RESET_COMPLETE (success or failure)

Login failures always surface as the same ``AuthenticationError("Invalid
credentials")``; the real reason is kept in the audit record's metadata.
Rate limiting happens before these methods are called (see
``api/dependencies.py``).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from ngo_backoffice.config import SecurityConfig
from ngo_backoffice.exceptions import AuthenticationError, ValidationError
from ngo_backoffice.logging import get_logger
from ngo_backoffice.security.audit import AuditEvent, AuditLogger, describe_error
from ngo_backoffice.security.audit_records import (
    ANONYMOUS_ACTOR,
    AuditAction,
    AuditActor,
    AuditStatus,
    RequestMeta,
)
from ngo_backoffice.security.models import SessionClaims
from ngo_backoffice.security.passwords import (
    PasswordHasher,
    digest_reset_token,
    new_reset_token,
    validate_email,
    validate_password,
)
from ngo_backoffice.security.tokens import TokenService
from ngo_backoffice.services.mail import (
    Mailer,
    password_changed_message,
    password_reset_message,
)
from ngo_backoffice.store.admins import Administrator, AdminStore

log = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
RESET_REQUESTED = "If the email exists, a password reset link has been sent"
INVALID_RESET_TOKEN = "Invalid or expired reset token"


@dataclass(frozen=True)
class LoginResult:
    token: str
    admin: Administrator

    def user_view(self) -> dict[str, object]:
        return {
            "id": self.admin.id,
            "username": self.admin.username,
            "email": self.admin.email,
            "role": self.admin.role.value if self.admin.role else None,
            "permissions": list(self.admin.permissions),
        }


class AuthService:
    def __init__(
        self,
        admins: AdminStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        audit: AuditLogger,
        mailer: Mailer,
        config: SecurityConfig,
    ) -> None:
        self._admins = admins
        self._hasher = hasher
        self._tokens = tokens
        self._audit = audit
        self._mailer = mailer
        self._config = config
        self._pending_mail: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, username: object, password: object, meta: RequestMeta) -> LoginResult:
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            self._record_login_failure(ANONYMOUS_ACTOR, meta, "missing_credentials")
            raise ValidationError("Username and password are required")

        if (
            len(username) > self._config.username_max_length
            or len(password) > self._config.password_max_length
        ):
            self._record_login_failure(ANONYMOUS_ACTOR, meta, "input_too_long")
            raise AuthenticationError(INVALID_CREDENTIALS)

        try:
            admin = await self._admins.get_by_username(username)
            password_ok = await self._hasher.verify_or_dummy(
                password, admin.password_hash if admin else None
            )
        except Exception as exc:
            self._record_login_failure(
                ANONYMOUS_ACTOR, meta, "lookup_error", error_message=describe_error(exc)
            )
            raise

        if admin is None:
            self._record_login_failure(
                ANONYMOUS_ACTOR, meta, "unknown_user", username=username.strip()
            )
            raise AuthenticationError(INVALID_CREDENTIALS)
        actor = AuditActor(id=admin.id, email=admin.email)
        if not password_ok:
            self._record_login_failure(actor, meta, "bad_password")
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not admin.is_active:
            self._record_login_failure(actor, meta, "inactive_account")
            raise AuthenticationError(INVALID_CREDENTIALS)

        try:
            if admin.role is None:
                admin = await self._migrate_legacy(admin)
            await self._admins.record_login(admin.id)
            token = self._tokens.issue(
                user_id=admin.id,
                username=admin.username,
                email=admin.email,
                role=admin.role,
                permissions=admin.permissions,
            )
        except Exception as exc:
            self._record_login_failure(
                actor, meta, "session_error", error_message=describe_error(exc)
            )
            raise

        self._audit.record_auth_event(AuditAction.LOGIN, actor, meta)
        log.info("admin_logged_in", admin_id=admin.id, role=admin.role.value if admin.role else None)
        return LoginResult(token=token, admin=admin)

    def logout(self, claims: SessionClaims | None, meta: RequestMeta) -> None:
        if claims is None:
            return
        self._audit.record_auth_event(AuditAction.LOGOUT, AuditActor.from_claims(claims), meta)

    async def _migrate_legacy(self, admin: Administrator) -> Administrator:
        migrated = await self._admins.migrate_legacy_role(admin.id)
        refreshed = await self._admins.require(admin.id)
        if migrated:
            log.warning(
                "legacy_admin_migrated",
                admin_id=admin.id,
                role=refreshed.role.value if refreshed.role else None,
            )
            self._audit.record_system_event(
                AuditAction.UPDATE,
                "admin",
                resource_id=admin.id,
                changes={
                    "before": {"role": None, "permissions": admin.permissions},
                    "after": {
                        "role": refreshed.role.value if refreshed.role else None,
                        "permissions": refreshed.permissions,
                    },
                },
                metadata={"reason": "legacy_role_migration"},
            )
        return refreshed

    def _record_login_failure(
        self,
        actor: AuditActor,
        meta: RequestMeta,
        reason: str,
        *,
        error_message: str = INVALID_CREDENTIALS,
        **extra: str,
    ) -> None:
        self._audit.record(
            AuditEvent(
                action=AuditAction.LOGIN_FAILED,
                resource="auth",
                actor=actor,
                meta=meta,
                status=AuditStatus.FAILURE,
                error_message=error_message,
                metadata={"reason": reason, **extra},
            )
        )

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    async def change_password(
        self,
        claims: SessionClaims,
        current_password: object,
        new_password: object,
        meta: RequestMeta,
    ) -> None:
        async with self._audit.track(
            AuditAction.PASSWORD_CHANGE,
            "auth",
            actor=AuditActor.from_claims(claims),
            meta=meta,
            resource_id=claims.user_id,
        ):
            if not isinstance(current_password, str) or not current_password:
                raise ValidationError.for_field("currentPassword", "Current password is required")
            password = validate_password(
                new_password,
                field="newPassword",
                min_length=self._config.password_min_length,
                max_length=self._config.password_max_length,
            )
            if password == current_password:
                raise ValidationError.for_field(
                    "newPassword", "New password must differ from the current password"
                )

            admin = await self._admins.require(claims.user_id)
            if not await self._hasher.verify_or_dummy(current_password, admin.password_hash):
                raise AuthenticationError("Current password is incorrect")

            await self._admins.set_password(admin.id, await self._hasher.hash_async(password))

        self._notify(admin.email, *password_changed_message(admin.username))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: object, meta: RequestMeta) -> str:
        """Issue a reset token when *email* belongs to an active account.

        Always returns the same message so callers cannot discover which accounts exist.
        """
        admin: Administrator | None = None
        try:
            address = validate_email(email)
            admin = await self._admins.get_by_email(address)
            if admin is None or not admin.is_active:
                self._record_reset(
                    AuditAction.PASSWORD_RESET_REQUEST, None, meta,
                    error_message="No active account for address",
                )
                return RESET_REQUESTED

            token, digest = new_reset_token()
            expires_at = time.time() + self._config.reset_token_ttl_minutes * 60
            await self._admins.set_reset_token(admin.id, digest, expires_at)
        except Exception as exc:
            self._record_reset(
                AuditAction.PASSWORD_RESET_REQUEST, admin, meta, error_message=describe_error(exc)
            )
            raise

        link = f"{self._config.reset_link_base}?{urlencode({'token': token})}"
        self._notify(
            admin.email,
            *password_reset_message(admin.username, link, self._config.reset_token_ttl_minutes),
        )
        self._record_reset(AuditAction.PASSWORD_RESET_REQUEST, admin, meta)
        return RESET_REQUESTED

    async def complete_password_reset(
        self, token: object, new_password: object, meta: RequestMeta
    ) -> None:
        admin: Administrator | None = None
        try:
            if not isinstance(token, str) or not token:
                raise ValidationError.for_field("token", "Reset token is required")
            password = validate_password(
                new_password,
                field="newPassword",
                min_length=self._config.password_min_length,
                max_length=self._config.password_max_length,
            )
            admin = await self._admins.get_by_reset_token(digest_reset_token(token))
            if admin is None or not admin.is_active:
                raise ValidationError(INVALID_RESET_TOKEN)
            await self._admins.set_password(admin.id, await self._hasher.hash_async(password))
        except Exception as exc:
            self._record_reset(
                AuditAction.PASSWORD_RESET_COMPLETE, admin, meta, error_message=describe_error(exc)
            )
            raise

        self._record_reset(AuditAction.PASSWORD_RESET_COMPLETE, admin, meta)
        self._notify(admin.email, *password_changed_message(admin.username))

    def _record_reset(
        self,
        action: AuditAction,
        admin: Administrator | None,
        meta: RequestMeta,
        *,
        error_message: str | None = None,
    ) -> None:
        """One record per reset attempt; failure when *error_message* is set."""
        self._audit.record(
            AuditEvent(
                action=action,
                resource="auth",
                actor=AuditActor(id=admin.id, email=admin.email) if admin else ANONYMOUS_ACTOR,
                meta=meta,
                resource_id=admin.id if admin else None,
                status=AuditStatus.FAILURE if error_message else AuditStatus.SUCCESS,
                error_message=error_message,
            )
        )

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    def _notify(self, to: str, subject: str, body: str) -> None:
        """Send mail in the background.  Delivery failures are logged only."""
        task = asyncio.create_task(self._send(to, subject, body))
        self._pending_mail.add(task)
        task.add_done_callback(self._pending_mail.discard)

    async def _send(self, to: str, subject: str, body: str) -> None:
        try:
            await self._mailer.send(to, subject, body)
        except Exception as exc:
            log.warning("mail_delivery_failed", to=to, subject=subject, error=str(exc))

    async def drain_mail(self) -> None:
        """Wait for in-flight notifications."""
        if self._pending_mail:
            await asyncio.gather(*self._pending_mail, return_exceptions=True)
