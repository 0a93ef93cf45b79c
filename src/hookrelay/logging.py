"""structlog configuration and logger access."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_SENSITIVE_KEYS = frozenset({"token", "hook_token", "authorization"})


def _redact_secrets(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key in _SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _stderr_logger(*_args: Any) -> structlog.PrintLogger:
    # Resolve sys.stderr per call so redirected streams are honoured.
    return structlog.PrintLogger(sys.stderr)


def setup_logging(level: str = "INFO", *, json: bool = False) -> None:
    """Configure structlog for the process.

    Console rendering is the default; ``json=True`` emits one JSON object
    per line for log aggregators.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)
