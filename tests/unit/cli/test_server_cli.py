"""Unit tests — CLI server commands."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from ngo_backoffice.cli.commands.server import app
from ngo_backoffice.cli.main import app as root_app

runner = CliRunner()


@pytest.mark.unit
class TestServerStart:
    def test_start_invokes_uvicorn(self) -> None:
        with patch("ngo_backoffice.api.server.create_app", return_value=MagicMock()) as mock_create, \
             patch("ngo_backoffice.cli.commands.server.uvicorn.run") as mock_uvicorn:
            result = runner.invoke(app, ["start", "--host", "127.0.0.1", "--port", "8100"])

        assert result.exit_code == 0, result.output
        mock_create.assert_called_once()
        call_kwargs = mock_uvicorn.call_args[1]
        assert call_kwargs["port"] == 8100
        assert call_kwargs["host"] == "127.0.0.1"

    def test_start_with_log_level(self) -> None:
        with patch("ngo_backoffice.api.server.create_app", return_value=MagicMock()), \
             patch("ngo_backoffice.cli.commands.server.uvicorn.run") as mock_uvicorn:
            result = runner.invoke(app, ["start", "--log-level", "debug"])

        assert result.exit_code == 0
        assert mock_uvicorn.call_args[1]["log_level"] == "debug"


@pytest.mark.unit
class TestServerStatus:
    def test_status_success(self) -> None:
        mock_resp = MagicMock()
        mock_resp.json.return_value = {"status": "ok", "version": "0.1.0", "uptime_seconds": 4.2}

        with patch("httpx.get", return_value=mock_resp):
            result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_status_unreachable_exits_1(self) -> None:
        import httpx

        with patch("httpx.get", side_effect=httpx.ConnectError("unreachable")):
            result = runner.invoke(app, ["status"])

        assert result.exit_code == 1


@pytest.mark.unit
def test_root_help_lists_groups() -> None:
    result = runner.invoke(root_app, ["--help"])
    assert result.exit_code == 0
    assert "server" in result.output
    assert "admins" in result.output
