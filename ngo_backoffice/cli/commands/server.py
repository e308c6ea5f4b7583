"""CLI — Server commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="Start and inspect the back office API server.")
console = Console()


@app.command("start")
def start(
    host: Annotated[str | None, typer.Option(help="Host to bind to.")] = None,
    port: Annotated[int | None, typer.Option(help="Port to listen on.")] = None,
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    log_level: str = typer.Option("info", help="Log level."),
) -> None:
    """Start the back office API server."""
    from ngo_backoffice.api.server import create_app
    from ngo_backoffice.config import Settings, override_settings

    settings = Settings.load(config_file=config)
    if host is not None:
        settings.server.host = host
    if port is not None:
        settings.server.port = port
    override_settings(settings)

    console.print(
        f"[bold green]Starting NGO Back Office on {settings.server.host}:{settings.server.port}[/bold green]"
    )
    if not settings.security.session_secret:
        console.print(
            "[yellow]No session secret configured; sessions will not survive a restart.[/yellow]"
        )

    uvicorn.run(
        create_app(settings=settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=log_level,
        # Forwarded headers are honoured by the app for server.trusted_proxies only.
        proxy_headers=False,
    )


@app.command("status")
def status(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(8000),
) -> None:
    """Query the running server's health endpoint."""
    import httpx

    try:
        resp = httpx.get(f"http://{host}:{port}/health", timeout=5.0)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        console.print(f"[red]Server unreachable: {exc}[/red]")
        raise typer.Exit(1)

    data = resp.json()
    table = Table(title="NGO Back Office Status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(str(key), str(value))
    console.print(table)
