"""
Store Rating - Structured Logging

structlog configuration shared by the whole service.

Security:
- Values of password/token/secret/authorization keys are never rendered
- Each request carries a request_id bound by the security middleware
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import structlog


REDACTED = "[redacted]"
_SENSITIVE_KEY_PARTS = ("password", "token", "secret", "authorization")


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor replacing credential-bearing values before rendering."""
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(part in lower_key for part in _SENSITIVE_KEY_PARTS):
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, colourless console output otherwise
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a configured logger bound to the module name."""
    return structlog.get_logger(logger_name=name)
