"""Unit tests — Roles, permissions and has_permission()."""

from __future__ import annotations

import time

import pytest

from ngo_backoffice.security.models import (
    ALL_PERMISSIONS,
    DEFAULT_PERMISSIONS,
    Permission,
    Role,
    SessionClaims,
    default_permissions_for,
    has_permission,
    parse_permissions,
)

pytestmark = pytest.mark.unit


def _claims(role: Role | None, permissions: tuple[str, ...] = ()) -> SessionClaims:
    now = time.time()
    return SessionClaims(
        user_id="u1",
        username="alice",
        email="alice@example.org",
        role=role,
        permissions=permissions,
        issued_at=now,
        expires_at=now + 3600,
    )


class TestHasPermission:
    @pytest.mark.parametrize("role", [Role.COORDINATOR, Role.TREASURER, Role.ADMIN])
    def test_non_super_roles_only_hold_listed_permissions(self, role: Role) -> None:
        held = (Permission.MANAGE_EVENTS.value,)
        claims = _claims(role, held)
        for permission in Permission:
            assert has_permission(claims, permission) is (permission.value in held)

    def test_super_admin_holds_everything_even_with_empty_set(self) -> None:
        claims = _claims(Role.SUPER_ADMIN, ())
        assert all(has_permission(claims, p) for p in Permission)

    def test_missing_role_fails_closed(self) -> None:
        claims = _claims(None, tuple(p.value for p in ALL_PERMISSIONS))
        assert not any(has_permission(claims, p) for p in Permission)

    def test_unknown_permission_strings_grant_nothing(self) -> None:
        claims = _claims(Role.ADMIN, ("manage_everything",))
        assert not any(has_permission(claims, p) for p in Permission)


class TestDefaults:
    def test_super_admin_defaults_to_all_permissions(self) -> None:
        assert DEFAULT_PERMISSIONS[Role.SUPER_ADMIN] == ALL_PERMISSIONS

    def test_treasurer_can_view_audit_logs(self) -> None:
        assert Permission.VIEW_AUDIT_LOGS.value in default_permissions_for(Role.TREASURER)

    def test_coordinator_cannot_manage_admins(self) -> None:
        assert Permission.MANAGE_ADMINS.value not in default_permissions_for(Role.COORDINATOR)

    def test_parse_permissions_rejects_unknown_names(self) -> None:
        with pytest.raises(ValueError):
            parse_permissions(["manage_events", "fly"])


class TestSessionClaims:
    def test_expiry_boundary_is_inclusive(self) -> None:
        claims = _claims(Role.ADMIN)
        assert claims.is_expired(claims.expires_at)
        assert not claims.is_expired(claims.expires_at - 1)

    def test_public_view_has_no_timestamps(self) -> None:
        view = _claims(Role.ADMIN, ("manage_tags",)).public_view()
        assert view == {
            "id": "u1",
            "username": "alice",
            "email": "alice@example.org",
            "role": "admin",
            "permissions": ["manage_tags"],
        }
