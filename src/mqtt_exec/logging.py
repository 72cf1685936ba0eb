"""
Structured logging for mqtt-exec.

Every log event the dispatcher emits is a structlog event with a snake_case
name and key/value fields. Per-entry events carry ``entry=<name>`` so the
start, output and outcome of one invocation can be correlated.

Configuration Flow:
    ::

        configure_logging(level="INFO", json_format=False)
            ↓
        structlog configured with processor chain:
          1. merge_contextvars
          2. add_log_level
          3. TimeStamper (ISO, UTC)
          4. add_service_metadata
          5. JSONRenderer (or ConsoleRenderer for a tty)

Examples:
    >>> from mqtt_exec.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> logger.info("entry_loaded", entry="build", topic="ci/build")

Tags:
    logging, structlog, observability, mqtt-exec
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Store service name for metadata
_SERVICE_NAME = "mqtt-exec"

# Track if logging has been configured
_configured = False


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "mqtt-exec",
    force: bool = False,
) -> None:
    """Configure structured logging for the process.

    Should be called once at startup (CLI entry). Subsequent calls are
    no-ops unless ``force=True``.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        force: Reconfigure even if already configured
    """
    global _SERVICE_NAME, _configured

    if _configured and not force:
        return

    _SERVICE_NAME = service
    level_num = getattr(logging, level.upper())

    # Auto-detect format if not specified
    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # paho-mqtt logs through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_num,
        force=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


__all__ = [
    "configure_logging",
    "get_logger",
    "is_configured",
]
