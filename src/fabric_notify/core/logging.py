"""
Logging configuration.

Provides a single entry point for configuring structured logging with
structlog. Configuration is read from arguments or environment variables:

- FABRIC_NOTIFY_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- FABRIC_NOTIFY_LOG_FORMAT: json | console (default: console)

Token values, client secrets and Authorization headers are masked by a
processor that runs before rendering, so a stray ``log.debug(..., token=...)``
cannot leak a credential into notebook output.

Usage:
    # Configure at notebook/CLI startup
    from fabric_notify.core.logging import configure_logging, get_logger
    configure_logging()

    log = get_logger(__name__)
    log.info("mail_sent", sender="alerts@contoso.com", recipient_count=3)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "authorization",
        "client_secret",
        "password",
        "secret",
        "token",
    }
)

_configured = False


def redact_sensitive(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values of credential-bearing keys."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | str | None = None,
    format: Literal["json", "console"] | str | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Should be called once at startup (CLI entry, first notebook cell).
    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides FABRIC_NOTIFY_LOG_LEVEL)
        format: Output format (overrides FABRIC_NOTIFY_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("FABRIC_NOTIFY_LOG_LEVEL", "INFO")).upper()
    log_format = (format or os.environ.get("FABRIC_NOTIFY_LOG_FORMAT", "console")).lower()
    level_num = getattr(logging, log_level, logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_num,
        force=True,
    )
    logging.getLogger("fabric_notify").setLevel(level_num)
    # httpx logs every request at INFO, including full URLs
    logging.getLogger("httpx").setLevel(max(level_num, logging.WARNING))

    _configured = True


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``.

    Safe to call at import time: nothing is configured or emitted until the
    first log call.
    """
    return structlog.get_logger(name, **initial_values)


def bind_context(**kwargs: Any) -> None:
    """Attach values (sender, run id, notebook name...) to every later log entry."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def is_configured() -> bool:
    return _configured
