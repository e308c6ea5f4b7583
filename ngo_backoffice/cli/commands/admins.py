"""CLI — Administrator account commands.

These talk to the database directly, so they work before any administrator
exists (bootstrapping the first super admin) and while the server is down.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from ngo_backoffice.config import Settings
from ngo_backoffice.exceptions import BackofficeError
from ngo_backoffice.security.audit import AuditLogger
from ngo_backoffice.security.audit_records import AuditAction
from ngo_backoffice.security.models import ALL_PERMISSIONS, Role, default_permissions_for
from ngo_backoffice.security.passwords import PasswordHasher, validate_email, validate_password
from ngo_backoffice.store.admins import AdminStore
from ngo_backoffice.store.audit import AuditStore

app = typer.Typer(help="Manage administrator accounts.")
console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
]


def _store(config: Path | None) -> tuple[Settings, AdminStore]:
    settings = Settings.load(config_file=config)
    return settings, AdminStore(settings.database.path)


def _fail(exc: BackofficeError) -> None:
    console.print(f"[red]{exc.message}[/red]")
    raise typer.Exit(1)


async def _record_change(
    settings: Settings,
    action: AuditAction,
    admin_id: str,
    *,
    before: dict[str, Any] | None,
    after: dict[str, Any],
    operation: str,
) -> None:
    """Write one system-actor audit record for a change made from the CLI."""
    audit_store = AuditStore(settings.audit.db_path)
    await audit_store.init()
    audit = AuditLogger(audit_store, retention_days=settings.audit.retention_days)
    await audit.start()
    try:
        audit.record_system_event(
            action,
            "admin",
            resource_id=admin_id,
            changes={"before": before, "after": after},
            metadata={"operation": operation, "source": "cli"},
        )
    finally:
        await audit.stop()
        await audit_store.close()
    if audit.stats()["failed"]:
        console.print("[yellow]The change was applied but could not be audited.[/yellow]")


@app.command("create")
def create(
    username: str,
    email: str,
    role: Annotated[Role, typer.Option(help="Role of the new account.")] = Role.SUPER_ADMIN,
    password: Annotated[
        str, typer.Option(prompt=True, hide_input=True, confirmation_prompt=True)
    ] = "",
    config: ConfigOption = None,
) -> None:
    """Create an administrator account."""
    settings, store = _store(config)
    security = settings.security

    async def _run() -> None:
        await store.init()
        try:
            address = validate_email(email)
            validate_password(
                password,
                min_length=security.password_min_length,
                max_length=security.password_max_length,
            )
            hasher = PasswordHasher(rounds=security.bcrypt_rounds)
            admin = await store.create(
                username=username,
                email=address,
                password_hash=await hasher.hash_async(password),
                role=role,
                permissions=default_permissions_for(role),
                created_by="cli",
            )
        finally:
            await store.close()
        await _record_change(
            settings,
            AuditAction.CREATE,
            admin.id,
            before=None,
            after=admin.audit_snapshot(),
            operation="create",
        )
        console.print(f"[green]Created {admin.role.value if admin.role else '-'} {admin.username} ({admin.id})[/green]")

    try:
        asyncio.run(_run())
    except BackofficeError as exc:
        _fail(exc)


@app.command("list")
def list_admins(config: ConfigOption = None) -> None:
    """List administrator accounts."""
    _, store = _store(config)

    async def _run() -> None:
        await store.init()
        try:
            accounts = await store.list_all()
        finally:
            await store.close()

        table = Table(title="Administrators")
        table.add_column("Username", style="cyan")
        table.add_column("Email")
        table.add_column("Role", style="magenta")
        table.add_column("Active")
        table.add_column("Last login")
        for admin in accounts:
            last_login = (
                datetime.fromtimestamp(admin.last_login).isoformat(timespec="seconds")
                if admin.last_login
                else "never"
            )
            table.add_row(
                admin.username,
                admin.email,
                admin.role.value if admin.role else "[yellow]missing[/yellow]",
                "yes" if admin.is_active else "no",
                last_login,
            )
        console.print(table)

    asyncio.run(_run())


@app.command("promote")
def promote(username: str, config: ConfigOption = None) -> None:
    """Make an existing account a super admin with every permission."""
    settings, store = _store(config)

    async def _run() -> None:
        await store.init()
        try:
            admin = await store.get_by_username(username)
            if admin is None:
                console.print(f"[red]No administrator named {username}[/red]")
                raise typer.Exit(1)
            promoted = await store.update(
                admin.id,
                role=Role.SUPER_ADMIN,
                permissions=[p.value for p in ALL_PERMISSIONS],
            )
        finally:
            await store.close()
        await _record_change(
            settings,
            AuditAction.UPDATE,
            admin.id,
            before=admin.audit_snapshot(),
            after=promoted.audit_snapshot(),
            operation="promote",
        )
        console.print(f"[green]{username} is now a super admin[/green]")

    try:
        asyncio.run(_run())
    except BackofficeError as exc:
        _fail(exc)


@app.command("check-roles")
def check_roles(config: ConfigOption = None) -> None:
    """Report accounts that still lack a role."""
    settings, store = _store(config)

    async def _run() -> int:
        await store.init()
        try:
            return await store.count_missing_role()
        finally:
            await store.close()

    missing = asyncio.run(_run())
    if missing:
        console.print(
            f"[yellow]{missing} administrator(s) without a role; they are migrated at next login "
            f"(grace period {settings.security.legacy_role_grace_days} days).[/yellow]"
        )
        raise typer.Exit(1)
    console.print("[green]Every administrator has a role.[/green]")
