"""Integration tests — Authentication endpoints via the HTTP API.

A real app (in-process via TestClient) with temporary SQLite databases:
login sets the session cookie, verify reads it back, logout clears it, and
every failure answers identically while the audit trail keeps the reason.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from conftest import DEFAULT_PASSWORD, audit_records, seed_admin, sign_in_as
from ngo_backoffice.security.models import Role
from ngo_backoffice.services.mail import LogMailer


def _login(client: TestClient, username: str, password: str = DEFAULT_PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


@pytest.mark.integration
class TestLogin:
    def test_login_sets_hardened_cookie(self, client: TestClient) -> None:
        admin = seed_admin(client, "alice")
        resp = _login(client, "alice")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["user"]["id"] == admin.id
        assert body["user"]["role"] == "admin"

        cookie = resp.headers["set-cookie"].lower()
        assert "admin_token=" in cookie
        assert "httponly" in cookie
        assert "secure" in cookie
        assert "samesite=strict" in cookie
        assert "max-age=86400" in cookie

    def test_verify_returns_identity(self, client: TestClient) -> None:
        seed_admin(client, "alice")
        _login(client, "alice")
        resp = client.get("/auth/verify")
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "alice"

    def test_verify_without_session(self, client: TestClient) -> None:
        resp = client.get("/auth/verify")
        assert resp.status_code == 401
        assert resp.json()["code"] == "unauthorized"

    def test_failures_are_identical(self, client: TestClient) -> None:
        seed_admin(client, "alice")
        unknown = _login(client, "nobody")
        wrong = _login(client, "alice", "wrong-pass-1")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json()["error"] == wrong.json()["error"] == "Invalid credentials"
        assert "set-cookie" not in unknown.headers

        reasons = sorted(r.metadata["reason"] for r in audit_records(client, action="login_failed"))
        assert reasons == ["bad_password", "unknown_user"]

    def test_missing_fields_are_400(self, client: TestClient) -> None:
        resp = client.post("/auth/login", json={"username": "alice"})
        assert resp.status_code == 400

    def test_login_is_audited(self, client: TestClient) -> None:
        admin = seed_admin(client, "alice")
        _login(client, "alice")
        records = audit_records(client, action="login")
        assert len(records) == 1
        assert records[0].actor_id == admin.id
        assert records[0].user_agent is not None


@pytest.mark.integration
class TestLogout:
    def test_logout_clears_session(self, client: TestClient) -> None:
        seed_admin(client, "alice")
        _login(client, "alice")
        resp = client.post("/auth/logout")
        assert resp.status_code == 200
        assert client.get("/auth/verify").status_code == 401
        assert len(audit_records(client, action="logout")) == 1

    def test_logout_without_session_is_harmless(self, client: TestClient) -> None:
        assert client.post("/auth/logout").status_code == 200
        assert audit_records(client, action="logout") == []


@pytest.mark.integration
class TestPasswords:
    def test_change_password(self, client: TestClient) -> None:
        admin = seed_admin(client, "alice")
        sign_in_as(client, admin)
        resp = client.post(
            "/auth/change-password",
            json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "fresh-pass-2026"},
        )
        assert resp.status_code == 200
        assert _login(client, "alice", "fresh-pass-2026").status_code == 200

    def test_change_password_requires_session(self, client: TestClient) -> None:
        resp = client.post(
            "/auth/change-password",
            json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "fresh-pass-2026"},
        )
        assert resp.status_code == 401

    def test_weak_new_password(self, client: TestClient) -> None:
        admin = seed_admin(client, "alice")
        sign_in_as(client, admin)
        resp = client.post(
            "/auth/change-password",
            json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "short"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"][0]["field"] == "newPassword"

    def test_reset_flow(self, client: TestClient, mailer: LogMailer) -> None:
        seed_admin(client, "alice", role=Role.COORDINATOR)
        resp = client.post("/auth/reset-password/request", json={"email": "alice@example.org"})
        assert resp.status_code == 200
        generic = client.post("/auth/reset-password/request", json={"email": "ghost@example.org"})
        assert generic.json()["message"] == resp.json()["message"]

        client.portal.call(client.app.state.auth_service.drain_mail)  # type: ignore[union-attr]
        assert len(mailer.sent) == 1
        link = next(line for line in mailer.sent[0][2].splitlines() if "token=" in line)
        token = parse_qs(urlparse(link).query)["token"][0]

        done = client.post(
            "/auth/reset-password/verify", json={"token": token, "newPassword": "after-reset-1"}
        )
        assert done.status_code == 200
        assert _login(client, "alice", "after-reset-1").status_code == 200

        reused = client.post(
            "/auth/reset-password/verify", json={"token": token, "newPassword": "again-reset-2"}
        )
        assert reused.status_code == 400

    def test_malformed_reset_email_is_audited(self, client: TestClient) -> None:
        resp = client.post("/auth/reset-password/request", json={"email": "not-an-email"})
        assert resp.status_code == 400
        records = audit_records(client, action="password_reset_request")
        assert len(records) == 1
        assert records[0].status.value == "failure"
