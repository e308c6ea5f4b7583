"""NGO Back Office — Server configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/ngo-backoffice/config.yaml
    3. Explicit config file passed to ``Settings.load()``
    4. Environment variables prefixed with NGO_ (e.g. NGO_SECURITY__SESSION_SECRET)

Call ``Settings.load()`` once at server startup and inject the instance
through FastAPI dependencies.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the API with credentials.",
    )
    trusted_proxies: list[str] = Field(
        default_factory=list,
        description=(
            "Reverse proxies (IPs, CIDR networks or '*') whose X-Forwarded-For "
            "header is believed. Empty means the peer address is the client address."
        ),
    )


class SecurityConfig(BaseModel):
    session_secret: str | None = Field(
        default=None,
        description=(
            "Server-held secret used to seal session tokens. When unset a random "
            "per-process secret is generated and sessions do not survive restarts."
        ),
    )
    token_ttl_hours: Annotated[int, Field(ge=1, le=168)] = 24
    cookie_name: str = "admin_token"
    cookie_secure: bool = True
    bcrypt_rounds: Annotated[int, Field(ge=4, le=16)] = 12
    reset_token_ttl_minutes: Annotated[int, Field(ge=5, le=1440)] = 60
    reset_link_base: str = Field(
        default="http://localhost:3000/admin/reset-password",
        description="Page that receives the reset token as its ``token`` query parameter.",
    )
    password_min_length: Annotated[int, Field(ge=8, le=64)] = 8
    password_max_length: Annotated[int, Field(ge=16, le=1024)] = 128
    username_max_length: Annotated[int, Field(ge=8, le=256)] = 50
    legacy_role_grace_days: Annotated[int, Field(ge=0, le=365)] = Field(
        default=30,
        description=(
            "Administrators without a role are migrated at their next login. "
            "The startup check warns about any that remain."
        ),
    )


class RateLimitPolicyConfig(BaseModel):
    max_requests: Annotated[int, Field(ge=1, le=100_000)]
    window_minutes: Annotated[float, Field(gt=0, le=1440)]


class RateLimitConfig(BaseModel):
    auth: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(max_requests=5, window_minutes=15),
        description="Login attempts per client IP.",
    )
    password_reset: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(max_requests=3, window_minutes=15),
        description="Password reset requests per client IP.",
    )
    write: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(max_requests=20, window_minutes=1),
        description="Mutating API calls per client IP.",
    )
    read: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(max_requests=100, window_minutes=1),
        description="Read-only API calls per client IP.",
    )
    sweep_interval_seconds: Annotated[int, Field(ge=1, le=86_400)] = 600


class AuditConfig(BaseModel):
    db_path: Path = Path("~/.ngo-backoffice/audit.db")
    retention_days: Annotated[int, Field(ge=1, le=3650)] = 90
    queue_size: Annotated[int, Field(ge=1, le=1_000_000)] = 10_000
    security_events_limit: Annotated[int, Field(ge=1, le=1000)] = 100


class DatabaseConfig(BaseModel):
    path: Path = Path("~/.ngo-backoffice/backoffice.db")


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NGO_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("audit", "database", mode="before")
    @classmethod
    def expand_paths(cls, v: object) -> object:
        if isinstance(v, dict):
            for key in ("db_path", "path"):
                if key in v and isinstance(v[key], str):
                    v[key] = Path(v[key]).expanduser()
        return v

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from file + environment variables."""
        data: dict[str, object] = {}

        candidates = [Path("/etc/ngo-backoffice/config.yaml")]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml  # lazy import — only needed with a config file

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton — replaced by ``Settings.load()`` at server startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
