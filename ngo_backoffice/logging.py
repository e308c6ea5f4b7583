"""NGO Back Office — Structured logging configuration.

structlog renders every record with an ISO timestamp, level and logger name.
Request context (``request_id``, ``admin_id``) is bound with structlog's
context variables by the API middleware and the session dependency, so log
lines written while serving a request carry it without passing it around.

Credential-like keys are masked before rendering: the same process logs
login attempts, password resets and outgoing mail.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

REDACTED = "[redacted]"

_CREDENTIAL_FRAGMENTS = ("password", "secret", "token", "cookie", "authorization")

# Loggers that are too chatty at info level for an admin back office.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "asyncio", "aiosqlite")


def bind_request_context(request_id: str | None = None, admin_id: str | None = None) -> None:
    """Bind request context to the current async task."""
    context = {"request_id": request_id, "admin_id": admin_id}
    structlog.contextvars.bind_contextvars(**{k: v for k, v in context.items() if v is not None})


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars("request_id", "admin_id")


def redact_credentials(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """Mask values whose key names a credential.  The event name is kept."""
    for key in event_dict:
        if key != "event" and any(f in key.lower() for f in _CREDENTIAL_FRAGMENTS):
            event_dict[key] = REDACTED
    return event_dict


def _drop_color_message(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog and route stdlib logging (uvicorn, aiosqlite) through it.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` for human-readable output, ``"json"`` for
                  log shipping.
        log_file: Optional file written in addition to stdout.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _drop_color_message,
        redact_credentials,
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))
    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
