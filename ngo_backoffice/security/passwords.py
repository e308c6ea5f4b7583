"""Security layer — Password hashing, policy and reset tokens.

bcrypt is CPU-bound, so the async helpers run it in a worker thread.

``verify_or_dummy()`` always performs exactly one bcrypt comparison, against a
throwaway hash when the account does not exist, so "unknown user" and "wrong
password" take the same time.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import secrets

import bcrypt

from ngo_backoffice.exceptions import ValidationError

# bcrypt only looks at the first 72 bytes.
_BCRYPT_MAX_BYTES = 72

_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"[0-9]")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    def hash(self, password: str) -> str:
        password_bytes = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(
                password.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8")
            )
        except ValueError:
            # Corrupt or non-bcrypt hash in the store.
            return False

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_or_dummy(self, password: str, hashed: str | None) -> bool:
        """Verify *password*; when *hashed* is None burn the same time and return False."""
        if hashed is None:
            await asyncio.to_thread(self.verify, password, self._dummy_hash)
            return False
        return await asyncio.to_thread(self.verify, password, hashed)


def validate_password(
    password: object,
    *,
    field: str = "password",
    min_length: int = 8,
    max_length: int = 128,
) -> str:
    """Enforce the password policy, raising a field-level ``ValidationError``."""
    if not isinstance(password, str) or not password:
        raise ValidationError.for_field(field, "Password is required")
    if len(password) < min_length:
        raise ValidationError.for_field(
            field, f"Password must be at least {min_length} characters long"
        )
    if len(password) > max_length:
        raise ValidationError.for_field(field, "Password is too long")
    if not _LETTER.search(password) or not _DIGIT.search(password):
        raise ValidationError.for_field(
            field, "Password must contain at least one letter and one number"
        )
    return password


def validate_email(email: object, *, field: str = "email") -> str:
    if not isinstance(email, str) or not _EMAIL.match(email.strip().lower()):
        raise ValidationError.for_field(field, "Valid email is required")
    return email.strip().lower()


def new_reset_token() -> tuple[str, str]:
    """Return ``(token, digest)``.  Only the digest is stored."""
    token = secrets.token_urlsafe(32)
    return token, digest_reset_token(token)


def digest_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
