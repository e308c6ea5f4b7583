"""Security layer — Session token codec.

Session tokens are Fernet tokens (AES-128-CBC + HMAC-SHA256) wrapping a JSON
claims document.  The holder can neither read nor modify the claims: any
change to the ciphertext breaks the HMAC and the token is rejected.

Sessions are stateless.  There is no server-side session table, so a token
stays valid until it expires or the signing secret is rotated.

Usage::

    tokens = TokenService(secret="...", ttl_hours=24)
    token = tokens.issue(user_id="a1", username="jane", email="jane@ngo.org",
                         role=Role.ADMIN, permissions=["manage_events"])
    claims = tokens.verify(token)   # SessionClaims | None
"""

from __future__ import annotations

import base64
import json
import secrets
import time
from typing import Callable, Iterable

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import ValidationError as PydanticValidationError

from ngo_backoffice.logging import get_logger
from ngo_backoffice.security.models import Role, SessionClaims

log = get_logger(__name__)

_KDF_INFO = b"ngo-backoffice/session-token/v1"


def _derive_key(secret: str) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=_KDF_INFO)
    return base64.urlsafe_b64encode(hkdf.derive(secret.encode("utf-8")))


class TokenService:
    """Issues and verifies sealed, time-limited session tokens.

    Parameters
    ----------
    secret:
        Server-held secret.  Rotating it invalidates every outstanding token.
    ttl_hours:
        Token lifetime.  Defaults to 24 hours.
    clock:
        Time source returning epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("TokenService requires a non-empty secret")
        self._fernet = Fernet(_derive_key(secret))
        self._ttl_seconds = int(ttl_hours * 3600)
        self._clock = clock

    @classmethod
    def from_secret_or_random(
        cls,
        secret: str | None,
        *,
        ttl_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ) -> "TokenService":
        if not secret:
            log.warning(
                "session_secret_missing",
                hint="Set NGO_SECURITY__SESSION_SECRET; sessions will not survive a restart.",
            )
            secret = secrets.token_urlsafe(48)
        return cls(secret, ttl_hours=ttl_hours, clock=clock)

    def issue(
        self,
        *,
        user_id: str,
        username: str,
        email: str,
        role: Role | None,
        permissions: Iterable[str],
    ) -> str:
        """Return a sealed token for the given identity."""
        now = self._clock()
        claims = SessionClaims(
            user_id=user_id,
            username=username,
            email=email,
            role=role,
            permissions=tuple(permissions),
            issued_at=now,
            expires_at=now + self._ttl_seconds,
        )
        payload = json.dumps(claims.model_dump(mode="json"), separators=(",", ":"))
        token = self._fernet.encrypt_at_time(payload.encode("utf-8"), int(now))
        return token.decode("ascii")

    def verify(self, token: str | None) -> SessionClaims | None:
        """Return the embedded claims, or ``None`` for any invalid token.

        Never raises: malformed input, a broken seal and an expired token all
        yield ``None``.
        """
        if not token:
            return None
        now = self._clock()
        try:
            payload = self._fernet.decrypt_at_time(
                token.encode("ascii"),
                ttl=self._ttl_seconds,
                current_time=int(now),
            )
            claims = SessionClaims.model_validate(json.loads(payload))
        except (InvalidToken, UnicodeError, ValueError, TypeError, PydanticValidationError):
            return None
        if claims.is_expired(now):
            return None
        return claims
