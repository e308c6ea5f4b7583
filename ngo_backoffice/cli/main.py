"""NGO Back Office CLI — Entry point.

Usage:
    ngo-backoffice server start
    ngo-backoffice server status
    ngo-backoffice admins create <username> <email>
    ngo-backoffice admins list
    ngo-backoffice admins promote <username>
    ngo-backoffice admins check-roles
"""

from __future__ import annotations

import typer

from ngo_backoffice.cli.commands import admins, server

app = typer.Typer(
    name="ngo-backoffice",
    help="NGO Back Office — administration API with sessions, permissions and audit trail.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

app.add_typer(server.app, name="server")
app.add_typer(admins.app, name="admins")


@app.callback()
def main_callback() -> None:
    pass


if __name__ == "__main__":
    app()
