"""Unit tests — Settings.load, environment overrides, override_settings."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ngo_backoffice.config import Settings, get_settings, override_settings

pytestmark = pytest.mark.unit


class TestSettingsLoad:
    def test_defaults(self) -> None:
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.server.port == 8000
        assert settings.security.cookie_name == "admin_token"
        assert settings.security.token_ttl_hours == 24
        assert settings.rate_limits.auth.max_requests == 5
        assert settings.rate_limits.auth.window_minutes == 15
        assert settings.rate_limits.password_reset.max_requests == 3
        assert settings.audit.retention_days == 90

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "security:\n  token_ttl_hours: 8\n"
            "rate_limits:\n  write:\n    max_requests: 50\n    window_minutes: 1\n"
            "database:\n  path: ~/bo/data.db\n"
        )
        settings = Settings.load(config_file=config_file)
        assert settings.security.token_ttl_hours == 8
        assert settings.rate_limits.write.max_requests == 50
        assert settings.database.path == Path("~/bo/data.db").expanduser()

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NGO_SECURITY__SESSION_SECRET", "from-env")
        monkeypatch.setenv("NGO_AUDIT__RETENTION_DAYS", "30")
        settings = Settings()
        assert settings.security.session_secret == "from-env"
        assert settings.audit.retention_days == 30

    @pytest.mark.parametrize(
        "overrides",
        [
            {"security": {"token_ttl_hours": 0}},
            {"security": {"bcrypt_rounds": 3}},
            {"rate_limits": {"auth": {"max_requests": 0, "window_minutes": 15}}},
            {"logging": {"level": "loud"}},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            Settings(**overrides)


def test_override_settings_replaces_singleton(tmp_path: Path) -> None:
    custom = Settings(server={"port": 9123})
    override_settings(custom)
    assert get_settings() is custom
