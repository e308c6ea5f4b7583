"""Unit tests — CLI administrator commands against a temporary database."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ngo_backoffice.cli.commands.admins import app
from ngo_backoffice.security.audit_records import ActorType, AuditAction, AuditFilters, AuditRecord
from ngo_backoffice.security.models import Role
from ngo_backoffice.store.admins import AdminStore
from ngo_backoffice.store.audit import AuditStore

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"database:\n  path: {tmp_path / 'backoffice.db'}\n"
        f"audit:\n  db_path: {tmp_path / 'audit.db'}\n"
        "security:\n  bcrypt_rounds: 4\n"
    )
    return path


def _load(config_file: Path, username: str):
    store = AdminStore(config_file.parent / "backoffice.db")

    async def _run():
        await store.init()
        try:
            return await store.get_by_username(username)
        finally:
            await store.close()

    return asyncio.run(_run())


def _audit_records(config_file: Path) -> list[AuditRecord]:
    store = AuditStore(config_file.parent / "audit.db")

    async def _run() -> list[AuditRecord]:
        await store.init()
        try:
            return (await store.query(AuditFilters(resource="admin"))).records
        finally:
            await store.close()

    return asyncio.run(_run())


def _seed_legacy(config_file: Path) -> None:
    store = AdminStore(config_file.parent / "backoffice.db")

    async def _run() -> None:
        await store.init()
        try:
            await store.create(
                username="legacy",
                email="legacy@example.org",
                password_hash="$2b$04$x",
                role=None,
                permissions=[],
            )
        finally:
            await store.close()

    asyncio.run(_run())


@pytest.mark.unit
class TestCreate:
    def test_creates_super_admin_by_default(self, config_file: Path) -> None:
        result = runner.invoke(
            app,
            ["create", "alice", "alice@example.org", "--password", "bootstrap-1", "-c", str(config_file)],
        )
        assert result.exit_code == 0, result.output
        admin = _load(config_file, "alice")
        assert admin is not None
        assert admin.role is Role.SUPER_ADMIN
        assert admin.created_by == "cli"

    def test_role_option(self, config_file: Path) -> None:
        result = runner.invoke(
            app,
            [
                "create", "tom", "tom@example.org", "--role", "treasurer",
                "--password", "bootstrap-1", "-c", str(config_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert _load(config_file, "tom").role is Role.TREASURER

    def test_weak_password_exits_1(self, config_file: Path) -> None:
        result = runner.invoke(
            app, ["create", "alice", "alice@example.org", "--password", "weak", "-c", str(config_file)]
        )
        assert result.exit_code == 1
        assert _load(config_file, "alice") is None

    def test_duplicate_exits_1(self, config_file: Path) -> None:
        args = ["create", "alice", "alice@example.org", "--password", "bootstrap-1", "-c", str(config_file)]
        runner.invoke(app, args)
        result = runner.invoke(app, args)
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_create_is_audited_as_system(self, config_file: Path) -> None:
        runner.invoke(
            app,
            ["create", "alice", "alice@example.org", "--password", "bootstrap-1", "-c", str(config_file)],
        )
        admin = _load(config_file, "alice")
        records = _audit_records(config_file)
        assert len(records) == 1
        rec = records[0]
        assert rec.action is AuditAction.CREATE
        assert rec.actor_type is ActorType.SYSTEM
        assert rec.resource_id == admin.id
        assert rec.changes["after"]["role"] == "super_admin"
        assert "password_hash" not in rec.changes["after"]
        assert rec.metadata == {"operation": "create", "source": "cli"}

    def test_failed_create_is_not_audited(self, config_file: Path) -> None:
        runner.invoke(
            app, ["create", "alice", "alice@example.org", "--password", "weak", "-c", str(config_file)]
        )
        assert _audit_records(config_file) == []


@pytest.mark.unit
class TestInspect:
    def test_list(self, config_file: Path) -> None:
        runner.invoke(
            app, ["create", "alice", "alice@example.org", "--password", "bootstrap-1", "-c", str(config_file)]
        )
        result = runner.invoke(app, ["list", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "alice" in result.output

    def test_check_roles_clean(self, config_file: Path) -> None:
        result = runner.invoke(app, ["check-roles", "-c", str(config_file)])
        assert result.exit_code == 0

    def test_check_roles_reports_legacy(self, config_file: Path) -> None:
        _seed_legacy(config_file)
        result = runner.invoke(app, ["check-roles", "-c", str(config_file)])
        assert result.exit_code == 1
        assert "without a role" in result.output


@pytest.mark.unit
class TestPromote:
    def test_promote_legacy(self, config_file: Path) -> None:
        _seed_legacy(config_file)
        result = runner.invoke(app, ["promote", "legacy", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert _load(config_file, "legacy").role is Role.SUPER_ADMIN

    def test_promote_is_audited_with_before_and_after(self, config_file: Path) -> None:
        _seed_legacy(config_file)
        runner.invoke(app, ["promote", "legacy", "-c", str(config_file)])
        records = _audit_records(config_file)
        assert len(records) == 1
        rec = records[0]
        assert rec.action is AuditAction.UPDATE
        assert rec.actor_type is ActorType.SYSTEM
        assert rec.changes["before"]["role"] is None
        assert rec.changes["after"]["role"] == "super_admin"
        assert rec.metadata == {"operation": "promote", "source": "cli"}

    def test_promote_unknown(self, config_file: Path) -> None:
        result = runner.invoke(app, ["promote", "ghost", "-c", str(config_file)])
        assert result.exit_code == 1
