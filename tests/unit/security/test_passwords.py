"""Unit tests — password hashing, policy and reset tokens."""

from __future__ import annotations

import pytest

from ngo_backoffice.exceptions import ValidationError
from ngo_backoffice.security.passwords import (
    PasswordHasher,
    digest_reset_token,
    new_reset_token,
    validate_email,
    validate_password,
)

pytestmark = pytest.mark.unit


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


class TestHasher:
    def test_hash_then_verify(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("s3cret-pass")
        assert hashed.startswith("$2b$04$")
        assert hasher.verify("s3cret-pass", hashed)
        assert not hasher.verify("s3cret-pasS", hashed)

    def test_hashes_are_salted(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("same-pass-1") != hasher.hash("same-pass-1")

    def test_corrupt_hash_is_a_mismatch(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("anything1", "not-a-bcrypt-hash") is False

    async def test_verify_or_dummy_without_hash(self, hasher: PasswordHasher) -> None:
        assert await hasher.verify_or_dummy("whatever1", None) is False

    async def test_async_round_trip(self, hasher: PasswordHasher) -> None:
        hashed = await hasher.hash_async("async-pass-9")
        assert await hasher.verify_or_dummy("async-pass-9", hashed) is True


class TestPasswordPolicy:
    def test_accepts_letters_and_digits(self) -> None:
        assert validate_password("abcdefg1") == "abcdefg1"

    @pytest.mark.parametrize(
        ("value", "message"),
        [
            (None, "Password is required"),
            ("", "Password is required"),
            ("abc1", "at least 8 characters"),
            ("abcdefgh", "one letter and one number"),
            ("12345678", "one letter and one number"),
            ("a1" * 65, "too long"),
        ],
    )
    def test_rejections(self, value: object, message: str) -> None:
        with pytest.raises(ValidationError, match=message) as exc_info:
            validate_password(value, field="newPassword")
        assert exc_info.value.errors[0]["field"] == "newPassword"


class TestEmail:
    def test_normalises(self) -> None:
        assert validate_email("  Alice@Example.ORG ") == "alice@example.org"

    @pytest.mark.parametrize("value", ["", "alice", "alice@example", "a b@c.org", 42])
    def test_rejects(self, value: object) -> None:
        with pytest.raises(ValidationError):
            validate_email(value)


def test_reset_token_digest_matches() -> None:
    token, digest = new_reset_token()
    assert len(token) >= 40
    assert digest == digest_reset_token(token)
    assert digest != token
