"""Shared pytest fixtures for the ngo-backoffice test suite."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ngo_backoffice.api.server import create_app
from ngo_backoffice.config import Settings, override_settings
from ngo_backoffice.security.audit_records import AuditFilters, AuditRecord
from ngo_backoffice.security.models import Role, default_permissions_for
from ngo_backoffice.services.mail import LogMailer
from ngo_backoffice.store.admins import Administrator

TEST_SECRET = "test-session-secret-not-for-production"
DEFAULT_PASSWORD = "correct-horse-42"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else float(int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(tmp_path: Path, **rate_limits: Any) -> Settings:
    settings = Settings(
        server={"cors_origins": ["https://testserver"]},
        security={"session_secret": TEST_SECRET, "bcrypt_rounds": 4},
        rate_limits=rate_limits
        or {
            "auth": {"max_requests": 100, "window_minutes": 15},
            "password_reset": {"max_requests": 100, "window_minutes": 15},
            "write": {"max_requests": 1000, "window_minutes": 1},
            "read": {"max_requests": 1000, "window_minutes": 1},
        },
        audit={"db_path": str(tmp_path / "audit.db")},
        database={"path": str(tmp_path / "backoffice.db")},
        logging={"level": "warning", "format": "console"},
    )
    override_settings(settings)
    return settings


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> LogMailer:
    return LogMailer()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def app(test_settings: Settings, clock: FakeClock, mailer: LogMailer) -> FastAPI:
    return create_app(settings=test_settings, clock=clock, mailer=mailer)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    # https so the Secure session cookie is sent back.
    with TestClient(app, base_url="https://testserver", raise_server_exceptions=False) as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers operating on a running TestClient
# ---------------------------------------------------------------------------


def seed_admin(
    client: TestClient,
    username: str,
    *,
    role: Role | None = Role.ADMIN,
    permissions: list[str] | None = None,
    password: str = DEFAULT_PASSWORD,
    email: str | None = None,
) -> Administrator:
    """Create an administrator directly in the store."""
    state = client.app.state  # type: ignore[attr-defined]

    async def _create() -> Administrator:
        return await state.admin_store.create(
            username=username,
            email=email or f"{username}@example.org",
            password_hash=await state.password_hasher.hash_async(password),
            role=role,
            permissions=permissions if permissions is not None else (
                default_permissions_for(role) if role else []
            ),
        )

    return client.portal.call(_create)  # type: ignore[union-attr]


def sign_in_as(client: TestClient, admin: Administrator) -> None:
    """Put a valid session cookie for *admin* into the client's jar."""
    state = client.app.state  # type: ignore[attr-defined]
    token = state.token_service.issue(
        user_id=admin.id,
        username=admin.username,
        email=admin.email,
        role=admin.role,
        permissions=admin.permissions,
    )
    client.cookies.set(state.settings.security.cookie_name, token)


def audit_records(client: TestClient, **filters: Any) -> list[AuditRecord]:
    """Flush the audit queue, then return matching records (newest first)."""
    state = client.app.state  # type: ignore[attr-defined]
    client.portal.call(state.audit_logger.flush)  # type: ignore[union-attr]

    async def _query() -> list[AuditRecord]:
        page = await state.audit_store.query(AuditFilters(**filters), limit=200)
        return page.records

    return client.portal.call(_query)  # type: ignore[union-attr]
